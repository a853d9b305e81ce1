"""
Character alphabet of the handwriting line model.

The symbol order must be identical to the one used at training time, so it
is a versioned constant rather than configuration. Index 0 is the CTC blank.
The model emits a few more classes than there are listed symbols; those
extra indices decode to the unknown catch-all symbol.
"""

from dataclasses import dataclass

BLANK_SYMBOL = "<BLANK>"
UNKNOWN_SYMBOL = "¤"

MLT_V3_VERSION = "mlt-4modern_hw_rimes_lines-v3"
MLT_V3_NUM_CLASSES = 108

# fmt: off
MLT_V3_SYMBOLS: tuple[str, ...] = (
    BLANK_SYMBOL,
    " ", "!", '"', "#", "%", "&", "'", "(", ")", "*", "+", ",", "-", ".", "/",
    "0", "1", "2", "3", "4", "5", "6", "7", "8", "9",
    ":", ";", "=", "?",
    "A", "B", "C", "D", "E", "F", "G", "H", "I", "J", "K", "L", "M",
    "N", "O", "P", "Q", "R", "S", "T", "U", "V", "W", "X", "Y", "Z",
    "_",
    "a", "b", "c", "d", "e", "f", "g", "h", "i", "j", "k", "l", "m",
    "n", "o", "p", "q", "r", "s", "t", "u", "v", "w", "x", "y", "z",
    "{", "}",
    "¤", "°", "²",
    "À", "É", "à", "â", "ç", "è", "é", "ê", "ë", "î", "ô", "ù", "û", "œ",
    "€",
)
# fmt: on


@dataclass(frozen=True)
class Alphabet:
    """Ordered symbol list with a blank index and an unknown catch-all."""

    version: str
    symbols: tuple[str, ...]
    num_classes: int
    blank_index: int = 0
    unknown_symbol: str = UNKNOWN_SYMBOL

    def __post_init__(self):
        if not self.symbols:
            raise ValueError("alphabet must contain at least the blank symbol")
        if not 0 <= self.blank_index < len(self.symbols):
            raise ValueError(f"blank_index {self.blank_index} out of range")
        if self.num_classes < len(self.symbols):
            raise ValueError(
                f"num_classes ({self.num_classes}) smaller than symbol count ({len(self.symbols)})"
            )

    def __len__(self) -> int:
        return self.num_classes

    def symbol(self, index: int) -> str:
        """Symbol for a class index; indices past the listed symbols are unknown."""
        if 0 <= index < len(self.symbols):
            return self.symbols[index]
        return self.unknown_symbol

    def to_text(self, indices) -> str:
        return "".join(self.symbol(int(i)) for i in indices)


MLT_V3 = Alphabet(version=MLT_V3_VERSION, symbols=MLT_V3_SYMBOLS, num_classes=MLT_V3_NUM_CLASSES)
