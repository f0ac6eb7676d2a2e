"""Receipt Intake.

Turns a photographed paper receipt into pre-filled expense data: a
size-bounded image for storage, capture metadata, a resolved location,
recognized text, and best-guess amount, date, and merchant fields.
"""

__version__ = "1.0.0"
