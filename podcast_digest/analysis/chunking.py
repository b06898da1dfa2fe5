"""Split long transcripts into bounded chunks on natural boundaries"""

from typing import List

SENTENCE_TERMINATORS = ('。', '. ', '！', '？', '!', '?')
BOUNDARY_THRESHOLD = 0.7


def split_into_chunks(text: str, max_chars: int) -> List[str]:
    """
    Split text into chunks of at most max_chars characters.

    Within each window the cut goes after the last newline that lies past
    70% of the window, otherwise after the last sentence terminator past
    that point, otherwise at the window end. Joining the chunks gives back
    the original text.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if len(text) <= max_chars:
        return [text]

    chunks = []
    start = 0
    while start < len(text):
        end = start + max_chars
        if end >= len(text):
            chunks.append(text[start:])
            break

        threshold = start + max_chars * BOUNDARY_THRESHOLD
        last_newline = text.rfind('\n', start, end)
        if last_newline > threshold:
            end = last_newline + 1
        else:
            last_terminator = max(text.rfind(t, start, end) for t in SENTENCE_TERMINATORS)
            if last_terminator > threshold:
                end = last_terminator + 1

        chunks.append(text[start:end])
        start = end

    return chunks
