"""Isolated recognition worker reached over a one-shot message pipe.

Each request spawns a fresh process, sends it exactly one request
message, and waits a bounded time for exactly one response::

    request:  {"image": bytes, "lang": str, "psm": int,
               "tesseract_cmd": str | None, "timeout": float}
    response: {"success": True, "text": str, "confidence": float, "lines": [str]}
              {"success": False, "error": str}

The worker leads its own process group, so the Tesseract processes it
starts are signalled together with it. The group is torn down once the
response arrives, the wait times out, or the caller is cancelled.
"""

import asyncio
import multiprocessing
import os
import signal
from collections.abc import Callable
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess
from typing import Any

from receipt_intake.errors import RecognitionError
from receipt_intake.preprocessing.normalizer import NormalizedImage
from receipt_intake.utils.config import OCRConfig
from receipt_intake.utils.logger import get_logger

from .tesseract_engine import RecognitionResult, TesseractEngine, clamp_confidence

logger = get_logger(__name__)

_JOIN_TIMEOUT = 5.0


def serve_recognition_request(conn: Connection) -> None:
    """Worker process entry point: answer a single recognition request."""
    try:
        request = conn.recv()
        engine = TesseractEngine(
            tesseract_cmd=request.get("tesseract_cmd"),
            default_lang=request.get("lang", "eng"),
            psm=request.get("psm", 3),
            timeout=request.get("timeout", 0),
        )
        result = engine.recognize(request["image"])
        response: dict[str, Any] = {
            "success": True,
            "text": result.text,
            "confidence": result.confidence,
            "lines": list(result.lines),
        }
    except Exception as exc:
        response = {"success": False, "error": str(exc) or type(exc).__name__}

    try:
        conn.send(response)
    finally:
        conn.close()


def run_in_process_group(target: Callable[[Connection], None], conn: Connection) -> None:
    """Make the current process a group leader, then run ``target``."""
    if hasattr(os, "setpgrp"):
        os.setpgrp()
    target(conn)


def _signal_group(pgid: int, signum: int) -> None:
    try:
        os.killpg(pgid, signum)
    except ProcessLookupError:
        pass
    except PermissionError as exc:
        logger.warning("Could not signal recognition process group %s: %s", pgid, exc)


def parse_response(response: object) -> RecognitionResult:
    """Convert a worker response message into a RecognitionResult."""
    if not isinstance(response, dict) or "success" not in response:
        return RecognitionResult.failure("Malformed response from recognition worker")

    if not response["success"]:
        return RecognitionResult.failure(str(response.get("error") or "Recognition failed"))

    text = str(response.get("text") or "")
    lines = [str(line).strip() for line in response.get("lines") or [] if str(line).strip()]
    if not lines:
        lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    return RecognitionResult(
        success=True,
        text=text,
        lines=tuple(lines),
        confidence=clamp_confidence(response.get("confidence")),
    )


class RecognitionWorker:
    """Runs OCR in a separate process, one process per request.

    Args:
        config: OCR configuration (language, psm, timeout, start method).
        target: Worker entry point. Must be a module-level callable
            accepting the child end of the pipe.
    """

    def __init__(
        self,
        config: OCRConfig,
        target: Callable[[Connection], None] = serve_recognition_request,
    ) -> None:
        self.config = config
        self.target = target
        self._context = multiprocessing.get_context(config.start_method)

    async def recognize(self, image: NormalizedImage) -> RecognitionResult:
        """Recognize text in ``image``.

        Args:
            image: Normalized receipt image.

        Returns:
            The recognition result. Timeouts, crashes, and worker-side
            errors come back as a failed result rather than raising.
        """
        request = {
            "image": image.data,
            "lang": self.config.default_lang,
            "psm": self.config.psm,
            "tesseract_cmd": self.config.tesseract_cmd,
            "timeout": self.config.timeout,
        }
        try:
            response = await self._round_trip(request)
        except (RecognitionError, OSError, EOFError) as exc:
            logger.warning("Recognition worker failed: %s", exc)
            return RecognitionResult.failure(str(exc) or type(exc).__name__)

        result = parse_response(response)
        if not result.success:
            logger.warning("Recognition worker reported failure: %s", result.error)
        return result

    async def _round_trip(self, request: dict[str, Any]) -> object:
        parent_conn, child_conn = self._context.Pipe()
        process = self._context.Process(
            target=run_in_process_group,
            args=(self.target, child_conn),
            name="receipt-ocr-worker",
            daemon=True,
        )
        starting = asyncio.ensure_future(asyncio.to_thread(process.start))

        try:
            await asyncio.shield(starting)
            child_conn.close()
            logger.debug("Started recognition worker pid=%s", process.pid)
            return await asyncio.wait_for(
                self._exchange(parent_conn, request), timeout=self.config.timeout
            )
        except TimeoutError as exc:
            raise RecognitionError(
                f"Recognition worker did not respond within {self.config.timeout:.1f}s"
            ) from exc
        finally:
            await asyncio.shield(self._shutdown(starting, process, parent_conn, child_conn))

    async def _exchange(self, conn: Connection, request: dict[str, Any]) -> object:
        await asyncio.to_thread(conn.send, request)
        ready = await asyncio.to_thread(conn.poll, self.config.timeout)
        if not ready:
            raise RecognitionError("Recognition worker did not respond")
        try:
            return conn.recv()
        except EOFError as exc:
            raise RecognitionError("Recognition worker exited without responding") from exc

    async def _shutdown(
        self,
        starting: "asyncio.Future[None]",
        process: BaseProcess,
        parent_conn: Connection,
        child_conn: Connection,
    ) -> None:
        try:
            await starting
        except Exception as exc:
            logger.debug("Recognition worker never started: %s", exc)
            child_conn.close()
            parent_conn.close()
            return
        child_conn.close()
        await asyncio.to_thread(self._teardown, process, parent_conn)

    @staticmethod
    def _teardown(process: BaseProcess, conn: Connection) -> None:
        pgid = process.pid if hasattr(os, "killpg") else None
        if pgid is not None:
            _signal_group(pgid, signal.SIGTERM)
        if process.is_alive():
            process.terminate()
        process.join(_JOIN_TIMEOUT)
        if process.is_alive():
            process.kill()
            process.join()
        # The reaped leader's id stays reserved while any group member lives.
        if pgid is not None:
            _signal_group(pgid, signal.SIGKILL)
        conn.close()
        logger.debug("Recognition worker pid=%s exited with %s", process.pid, process.exitcode)
