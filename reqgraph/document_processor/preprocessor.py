"""
Text cleanup applied to extracted document text before prompting.
"""

import re
import unicodedata

PAGE_MARKER_PATTERNS = [
    re.compile(r"^\s*\d+\s*$"),  # bare page number
    re.compile(r"^\s*Page\s+\d+(\s+of\s+\d+)?\s*$", re.IGNORECASE),
    re.compile(r"^\s*\d+\s+of\s+\d+\s*$", re.IGNORECASE),
    re.compile(r"^\s*-\s*\d+\s*-\s*$"),
]

LIGATURES = {
    "ﬁ": "fi",
    "ﬂ": "fl",
    "ﬀ": "ff",
    "ﬃ": "ffi",
    "ﬄ": "ffl",
}


class TextPreprocessor:
    """Normalize extracted text without changing its meaning."""

    def __init__(self, remove_page_markers: bool = True, normalize_whitespace: bool = True) -> None:
        self.remove_page_markers = remove_page_markers
        self.normalize_whitespace = normalize_whitespace

    def preprocess(self, text: str) -> str:
        if not text:
            return ""

        text = unicodedata.normalize("NFKC", text)
        for ligature, replacement in LIGATURES.items():
            text = text.replace(ligature, replacement)
        text = text.replace("\r\n", "\n").replace("\r", "\n")

        # Control characters except newline and tab
        text = "".join(
            char for char in text
            if char in "\n\t" or not unicodedata.category(char).startswith("C")
        )

        if self.remove_page_markers:
            text = "\n".join(
                line for line in text.split("\n")
                if not any(pattern.match(line) for pattern in PAGE_MARKER_PATTERNS)
            )

        if self.normalize_whitespace:
            text = text.replace("\t", " ")
            text = re.sub(r" +", " ", text)
            text = "\n".join(line.strip() for line in text.split("\n"))
            text = re.sub(r"\n{3,}", "\n\n", text)

        return text.strip()
