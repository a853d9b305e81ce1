"""Best-path (greedy) CTC decoding of per-frame class scores."""

import logging
from typing import Optional, Sequence

import numpy as np
import numpy.typing as npt

from exam_hwr.errors import InferenceShapeError

from .alphabet import Alphabet

logger = logging.getLogger(__name__)

# Separator between the lines of one region
LINE_SEPARATOR = "\n"
# Separator between independent results returned together
RESULT_SEPARATOR = ", "


def _as_matrix(probabilities) -> npt.NDArray:
    """Coerce input to a (time, classes) float array."""
    matrix = np.asarray(probabilities, dtype=np.float32)
    if matrix.size == 0:
        return matrix.reshape(0, 0)
    if matrix.ndim != 2:
        raise InferenceShapeError(f"probability matrix must be 2-D (time, classes), got shape {matrix.shape}")
    return matrix


def best_path_indices(probabilities, max_len: int = -1) -> npt.NDArray:
    """
    Index of the best class at each frame.

    Ties go to the lowest index (first occurrence of the maximum).

    Args:
        probabilities: shape (time, classes)
        max_len: number of leading frames to consider, -1 for all of them
    """
    matrix = _as_matrix(probabilities)
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.int64)
    if max_len != -1:
        matrix = matrix[: max(0, min(max_len, matrix.shape[0]))]
    return np.argmax(matrix, axis=1)


def collapse_best_path(
    indices: Sequence[int],
    blank_index: Optional[int] = 0,
    remove_duplicates: bool = True,
) -> list[int]:
    """
    Collapse a raw best path into emitted class indices.

    An index is dropped when it equals the raw index right before it (not the
    last kept one), or when it is the blank. blank_index=None keeps blanks.
    """
    if not remove_duplicates:
        return [int(i) for i in indices]

    kept = []
    prev = None
    for idx in indices:
        idx = int(idx)
        if idx != prev and idx != blank_index:
            kept.append(idx)
        prev = idx
    return kept


def decode_best_path(
    probabilities,
    alphabet: Alphabet,
    max_len: int = -1,
    remove_duplicates: bool = True,
) -> str:
    """
    Decode one probability matrix to text.

    Args:
        probabilities: shape (time, classes) - probabilities, logits or log probabilities
        alphabet: class index to symbol mapping (index alphabet.blank_index is blank)
        max_len: number of leading frames to decode, -1 for all
        remove_duplicates: collapse repeats and drop blanks (plain argmax otherwise)

    Returns:
        Decoded text, "" for an empty matrix
    """
    path = best_path_indices(probabilities, max_len=max_len)
    kept = collapse_best_path(path, alphabet.blank_index, remove_duplicates)
    return alphabet.to_text(kept)


def decode_best_path_with_confidence(
    log_probs,
    alphabet: Alphabet,
    max_len: int = -1,
) -> tuple[str, float]:
    """
    Greedy decode with a confidence score.

    The confidence is the mean score of the best class over the frames that
    emitted a symbol. With log probabilities as input this is the mean log
    probability of the decoded characters.

    Returns:
        Tuple of (decoded text, confidence), confidence is -inf when nothing was emitted
    """
    matrix = _as_matrix(log_probs)
    path = best_path_indices(matrix, max_len=max_len)
    if len(path) == 0:
        return "", -float("inf")

    best_scores = matrix[np.arange(len(path)), path]

    decoded = []
    scores = []
    prev = None
    for i, idx in enumerate(path):
        idx = int(idx)
        if idx != prev and idx != alphabet.blank_index:
            decoded.append(alphabet.symbol(idx))
            scores.append(best_scores[i])
        prev = idx

    if scores:
        confidence = float(np.mean(scores))
    else:
        confidence = -float("inf")
    return "".join(decoded), confidence


def decode_batch(
    batch,
    alphabet: Alphabet,
    separator: str = RESULT_SEPARATOR,
    max_len: int = -1,
    remove_duplicates: bool = True,
) -> str:
    """
    Decode every row of a (batch, time, classes) array independently and join them.

    A 2-D input is treated as a batch of one. max_len and remove_duplicates
    apply to every row, as in decode_best_path.
    """
    array = np.asarray(batch, dtype=np.float32)
    if array.size == 0:
        return ""
    if array.ndim == 2:
        array = array[np.newaxis, ...]
    if array.ndim != 3:
        raise InferenceShapeError(f"batch must be 3-D (batch, time, classes), got shape {array.shape}")

    return separator.join(
        decode_best_path(row, alphabet, max_len=max_len, remove_duplicates=remove_duplicates) for row in array
    )
