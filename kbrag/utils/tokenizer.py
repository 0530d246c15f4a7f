import re
from typing import List, Iterator

import spacy

_WORD_PATTERN = re.compile(r"\S+")
_SENTENCE_PATTERN = re.compile(r"(?<=[\.\?\!。！？])\s+")


class Tokenizer:
    """
    Sentence splitter and token counter.

    Uses spaCy's sentencizer when the model loads, otherwise a lightweight regex splitter.
    Tokens are whitespace-delimited words, which keeps chunk sizes stable across model versions.
    """

    def __init__(self, lightweight: bool = False, model: str = "en_core_web_sm"):
        self.lightweight = lightweight
        self.model_name = model
        self.nlp = None
        if not lightweight:
            try:
                # disable heavy components we don't need, but ensure sentencizer is present
                self.nlp = spacy.load(self.model_name, disable=["parser", "ner"])
                if "sentencizer" not in self.nlp.pipe_names:
                    self.nlp.add_pipe("sentencizer")
            except (OSError, ValueError):
                # model not installed -> fall back to lightweight
                self.nlp = None
                self.lightweight = True

    @staticmethod
    def words(text: str) -> List[str]:
        return _WORD_PATTERN.findall(text)

    def count_tokens(self, text: str) -> int:
        return len(self.words(text))

    def _chunk_text(self, text: str, max_len: int) -> Iterator[str]:
        """Yield text slices of at most max_len characters, splitting at whitespace to avoid cutting words."""
        start = 0
        text_len = len(text)
        while start < text_len:
            end = min(start + max_len, text_len)
            if end < text_len:
                split_pos = text.rfind("\n", start, end)
                if split_pos == -1:
                    split_pos = text.rfind(" ", start, end)
                if split_pos == -1 or split_pos <= start:
                    split_pos = end
                end = split_pos
            yield text[start:end]
            start = end

    def _regex_split(self, text: str) -> List[str]:
        return [p.strip() for p in _SENTENCE_PATTERN.split(text) if p and p.strip()]

    def tokenize(self, text: str) -> List[str]:
        """Return list of sentence strings. Handles very large inputs by chunking for spaCy."""
        if not text:
            return []

        if self.lightweight or self.nlp is None:
            return self._regex_split(text)

        max_len = getattr(self.nlp, "max_length", 1_000_000)
        safe_max = max_len - 1000 if max_len > 1000 else max_len

        sentences: List[str] = []
        for part in self._chunk_text(text, safe_max):
            doc = self.nlp(part)
            for sent in doc.sents:
                s = sent.text.strip()
                if s:
                    sentences.append(s)

        return sentences
