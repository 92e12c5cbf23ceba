"""tdshape package root."""

from tdshape.exceptions import IllFormedDeclarationError, NeverThrown, TypeExpressionError
from tdshape.invariants import never

__all__ = [
    "__version__",
    "IllFormedDeclarationError",
    "NeverThrown",
    "TypeExpressionError",
    "never",
]

__version__ = "0.1.0"
