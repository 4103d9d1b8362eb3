from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from devmem.config import ExtractionConfig
from devmem.errors import ValidationError
from devmem.extraction.models import ExtractedEntity, ExtractedRelationship, Extraction
from devmem.extraction.vocabulary import (
    AMBIGUOUS_TECHNOLOGIES,
    LEADING_WORDS,
    MAX_TECH_WORDS,
    ORG_SUFFIXES,
    PERSON_CUES,
    PURPOSE_CUES,
    RELATION_CUES,
    SOURCE_EXTENSIONS,
    STOPWORDS,
    TECHNOLOGIES,
)
from devmem.graph.models import EntityType, RelationType
from devmem.utils import normalize_name

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"@?[^\W_][\w.+#/\-]*")
_SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_CUE_PATTERNS = tuple(
    (relation, re.compile(r"\b(?:" + "|".join(re.escape(cue) for cue in cues) + r")\b"))
    for relation, cues in RELATION_CUES
)


@dataclass(frozen=True)
class _Token:
    index: int
    text: str
    start: int
    end: int
    sentence: int
    sentence_start: bool
    breaks_after: bool


@dataclass
class _Mention:
    name: str
    type: str
    observation: str
    spans: list[tuple[int, int, int]] = field(default_factory=list)
    sentence: int = -1
    from_tag: bool = False


def _tokenize(text: str) -> list[_Token]:
    breaks = [match.end() for match in _SENTENCE_BREAK_RE.finditer(text)]
    raw: list[tuple[str, int, int, int]] = []
    sentence = 0
    for match in _TOKEN_RE.finditer(text):
        word = match.group(0).rstrip(".-/")
        if not word or word == "@":
            continue
        start = match.start()
        while sentence < len(breaks) and breaks[sentence] <= start:
            sentence += 1
        raw.append((word, start, start + len(word), sentence))

    tokens = []
    for index, (word, start, end, sentence) in enumerate(raw):
        if index + 1 < len(raw):
            following = raw[index + 1]
            breaks_after = following[3] != sentence or bool(text[end : following[1]].strip())
        else:
            breaks_after = True
        sentence_start = index == 0 or raw[index - 1][3] != sentence
        tokens.append(_Token(index, word, start, end, sentence, sentence_start, breaks_after))
    return tokens


def _sentences(text: str) -> list[str]:
    out = []
    start = 0
    for match in _SENTENCE_BREAK_RE.finditer(text):
        out.append(text[start : match.start()])
        start = match.end()
    out.append(text[start:])
    return out


def _is_capitalized(word: str) -> bool:
    return word[:1].isupper() and word.isalnum()


def _is_camel(word: str) -> bool:
    return any((a.islower() or a.isdigit()) and b.isupper() for a, b in zip(word, word[1:]))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class EntityExtractor:
    """Rule-based entity and relationship extraction over one record.

    Pure and deterministic: the same text and tags always produce the same
    entities, in first-mention order, and the same relationships.
    """

    def __init__(self, config: ExtractionConfig | None = None) -> None:
        self.config = config or ExtractionConfig()

    def extract(self, text: str, tags: Iterable[str] | None = None) -> Extraction:
        if not isinstance(text, str):
            raise ValidationError("Extraction input must be a string")
        tokens = _tokenize(text)
        sentences = _sentences(text)
        found: dict[tuple[str, str], _Mention] = {}

        i = 0
        while i < len(tokens):
            match = self._match(tokens, i)
            if match is None:
                i += 1
                continue
            name, entity_type, length = match
            first, last = tokens[i], tokens[i + length - 1]
            mention = self._remember(found, name, entity_type, "")
            if mention is not None:
                if mention.sentence < 0:
                    mention.sentence = first.sentence
                    mention.observation = self._observation(sentences[first.sentence])
                mention.spans.append((first.index, first.start, last.end))
            i += length

        for tag in tags or ():
            label = str(tag).strip()
            if not label:
                continue
            canonical = TECHNOLOGIES.get(normalize_name(label))
            if canonical is not None:
                name, entity_type = canonical, EntityType.TECHNOLOGY.value
            else:
                name, entity_type = label, EntityType.CONCEPT.value
            mention = self._remember(found, name, entity_type, f'Tagged "{label}"')
            if mention is not None and not mention.spans:
                mention.from_tag = True

        mentions = list(found.values())
        entities = [
            ExtractedEntity(
                name=item.name,
                type=item.type,
                observation=item.observation,
                positions=tuple(span[0] for span in item.spans),
                from_tag=item.from_tag,
            )
            for item in mentions
        ]
        relationships = []
        for a in range(len(mentions)):
            for b in range(a + 1, len(mentions)):
                relationships.append(self._relate(text, mentions[a], mentions[b]))
        logger.debug(
            "Extracted %d entities and %d relationships", len(entities), len(relationships)
        )
        return Extraction(entities=entities, relationships=relationships)

    def _remember(
        self, found: dict[tuple[str, str], _Mention], name: str, entity_type: str, observation: str
    ) -> _Mention | None:
        key = (normalize_name(name), entity_type)
        mention = found.get(key)
        if mention is None:
            if len(found) >= self.config.max_entities:
                return None
            mention = _Mention(name=name, type=entity_type, observation=observation)
            found[key] = mention
        return mention

    def _observation(self, sentence: str) -> str:
        cleaned = " ".join(sentence.split())
        limit = self.config.observation_chars
        if limit > 0 and len(cleaned) > limit:
            cleaned = cleaned[:limit].rstrip()
        return cleaned

    def _match(self, tokens: list[_Token], i: int) -> tuple[str, str, int] | None:
        return (
            self._technology(tokens, i)
            or self._file(tokens[i])
            or self._handle(tokens[i])
            or self._person(tokens, i)
            or self._purpose(tokens, i)
            or self._capitalized(tokens, i)
        )

    def _technology(self, tokens: list[_Token], i: int) -> tuple[str, str, int] | None:
        if tokens[i].text.startswith("@"):
            return None
        for length in range(min(MAX_TECH_WORDS, len(tokens) - i), 0, -1):
            window = tokens[i : i + length]
            if any(token.breaks_after for token in window[:-1]):
                continue
            surface = " ".join(token.text.lower() for token in window)
            canonical = TECHNOLOGIES.get(surface)
            if canonical is None:
                continue
            if length == 1 and surface in AMBIGUOUS_TECHNOLOGIES and not window[0].text[0].isupper():
                continue
            return canonical, EntityType.TECHNOLOGY.value, length
        return None

    def _file(self, token: _Token) -> tuple[str, str, int] | None:
        leaf = token.text.rsplit("/", 1)[-1]
        if "." not in leaf:
            return None
        stem, extension = leaf.rsplit(".", 1)
        if stem and extension.lower() in SOURCE_EXTENSIONS:
            return token.text, EntityType.FILE.value, 1
        return None

    def _handle(self, token: _Token) -> tuple[str, str, int] | None:
        if token.text.startswith("@") and len(token.text) > 1:
            return token.text[1:], EntityType.PERSON.value, 1
        return None

    def _person(self, tokens: list[_Token], i: int) -> tuple[str, str, int] | None:
        if i == 0:
            return None
        cue = tokens[i - 1]
        if cue.breaks_after or cue.text.lower() not in PERSON_CUES:
            return None
        words = []
        for token in tokens[i : i + 2]:
            lowered = token.text.lower()
            if not token.text.isalpha() or not _is_capitalized(token.text):
                break
            if lowered in STOPWORDS or lowered in TECHNOLOGIES or token.text.isupper():
                break
            words.append(token.text)
            if token.breaks_after:
                break
        if not words or words[-1].lower() in ORG_SUFFIXES:
            return None
        return " ".join(words), EntityType.PERSON.value, len(words)

    def _purpose(self, tokens: list[_Token], i: int) -> tuple[str, str, int] | None:
        if i == 0:
            return None
        cue = tokens[i - 1]
        if cue.breaks_after or cue.text.lower() not in PURPOSE_CUES:
            return None
        words = []
        for token in tokens[i : i + 3]:
            word = token.text
            if not word.replace("-", "").isalpha() or not word.islower():
                break
            if word in STOPWORDS or word in TECHNOLOGIES:
                break
            words.append(word)
            if token.breaks_after:
                break
        if not words:
            return None
        return " ".join(words), EntityType.CONCEPT.value, len(words)

    def _capitalized(self, tokens: list[_Token], i: int) -> tuple[str, str, int] | None:
        first = tokens[i]
        lowered = first.text.lower()
        if not _is_capitalized(first.text) or lowered in STOPWORDS or lowered in LEADING_WORDS:
            return None
        span = [first]
        j = i
        while not tokens[j].breaks_after and j + 1 < len(tokens):
            following = tokens[j + 1]
            if not _is_capitalized(following.text) or following.text.lower() in STOPWORDS:
                break
            if self._technology(tokens, j + 1) is not None:
                break
            span.append(following)
            j += 1

        if len(span) > 1:
            name = " ".join(token.text for token in span)
            if span[-1].text.lower() in ORG_SUFFIXES:
                return name, EntityType.ORGANIZATION.value, len(span)
            return name, EntityType.PROJECT.value, len(span)
        word = first.text
        if _is_camel(word) and not word.isupper():
            return word, EntityType.PROJECT.value, 1
        if len(word) >= 2 and word.isupper():
            return word, EntityType.CONCEPT.value, 1
        if len(word) < 2:
            return None
        return word, EntityType.CONCEPT.value, 1

    def _relate(self, text: str, a: _Mention, b: _Mention) -> ExtractedRelationship:
        cfg = self.config
        source, target = a, b
        relation = RelationType.RELATED_TO
        if a.spans and b.spans:
            distance, left, right = min(
                (abs(x[0] - y[0]), x, y) for x in a.spans for y in b.spans
            )
            if left[0] > right[0]:
                source, target = b, a
                left, right = right, left
            relation = self._cue(text[left[2] : right[1]])
        else:
            distance = cfg.tag_distance
            if b.spans and not a.spans:
                source, target = b, a
        strength = _clamp(cfg.proximity_scale / max(1, distance), cfg.min_strength, cfg.max_strength)
        return ExtractedRelationship(
            source=(normalize_name(source.name), source.type),
            target=(normalize_name(target.name), target.type),
            type=relation.value,
            strength=_clamp(strength, 0.0, 1.0),
        )

    def _cue(self, between: str) -> RelationType:
        if any(mark in between for mark in ".!?\n"):
            return RelationType.RELATED_TO
        lowered = between.lower()
        for relation, pattern in _CUE_PATTERNS:
            if pattern.search(lowered):
                return relation
        return RelationType.RELATED_TO
