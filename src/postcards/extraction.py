"""Location extraction: the boundary with the language-model collaborator.

The real extractor (prompting an LLM and repairing its JSON) lives outside
this package. Anything implementing LocationExtractor can be plugged in.
SampleLocationExtractor serves built-in sample data so the pipeline can run
offline.
"""

import logging
from typing import Dict, List, Literal, Protocol

from .models import LocationRecord

logger = logging.getLogger(__name__)

Mode = Literal["book", "place"]


class LocationExtractor(Protocol):
    """Turns user text into ordered location records."""

    async def extract(
        self,
        text: str,
        mode: Mode = "book",
        min_places: int = 10,
        max_places: int = 30,
    ) -> List[LocationRecord]:
        """Return location records; an empty list means "not recognized"."""
        ...


SAMPLE_BOOKS: Dict[str, List[dict]] = {
    "norwegian wood": [
        {
            "location": "Norwegian Forest",
            "type": "real",
            "quote": "Everyone has a forest of their own. Those who are lost stay lost, and those who meet will meet again.",
            "imageQuery": "Norwegian forest mist atmospheric cinematic",
        },
        {
            "location": "Ami Hostel",
            "type": "fictional",
            "quote": "Death is not the opposite of life, but a part of it.",
            "imageQuery": "Japanese mountain lodge peaceful atmospheric",
        },
        {
            "location": "Tokyo",
            "type": "real",
            "quote": "Nobody likes being alone that much. I just don't make friends for the sake of it.",
            "imageQuery": "Tokyo cityscape urban atmospheric",
        },
    ],
    "one hundred years of solitude": [
        {
            "location": "Macondo",
            "type": "fictional",
            "quote": "It's enough for me to be sure that you and I exist at this moment.",
            "imageQuery": "Colombian jungle magical realism",
        },
        {
            "location": "Riohacha",
            "type": "real",
            "quote": "The world was so recent that many things lacked names.",
            "imageQuery": "Riohacha Colombia caribbean coast atmospheric",
        },
    ],
    "the great gatsby": [
        {
            "location": "West Egg",
            "type": "fictional",
            "quote": "So we beat on, boats against the current, borne back ceaselessly into the past.",
            "imageQuery": "Long Island mansion green light dock night atmospheric",
        },
        {
            "location": "New York City",
            "type": "real",
            "quote": "The city seen from the Queensboro Bridge is always the city seen for the first time.",
            "imageQuery": "1920s New York skyline atmospheric cinematic",
        },
    ],
}


class SampleLocationExtractor:
    """Offline extractor backed by SAMPLE_BOOKS.

    In "book" mode a known title returns its sample locations; an unknown
    title returns []. In "place" mode each comma-separated name becomes a
    real location.
    """

    def __init__(self, books: Dict[str, List[dict]] = None):
        self.books = SAMPLE_BOOKS if books is None else books

    async def extract(
        self,
        text: str,
        mode: Mode = "book",
        min_places: int = 10,
        max_places: int = 30,
    ) -> List[LocationRecord]:
        text = text.strip()
        if mode == "place":
            return self._places(text, max_places)

        entries = self.books.get(text.lower(), [])
        if not entries:
            logger.info(f"No sample locations for '{text}'")
        records = [
            LocationRecord(**entry, bookTitle=text, mode="book")
            for entry in entries[:max_places]
        ]
        return records

    def _places(self, text: str, max_places: int) -> List[LocationRecord]:
        normalized = text.replace("，", ",").replace("、", ",")
        names = [name.strip() for name in normalized.split(",") if name.strip()]
        return [
            LocationRecord(location=name, type="real", mode="place")
            for name in names[:max_places]
        ]
