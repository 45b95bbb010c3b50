from typing import Dict, Iterator, List, Tuple

# Fixed wall sections, in display order. Keys are what clients send.
SECTIONS: Tuple[Tuple[str, str], ...] = (
    ("section1", "Kutlamalar"),
    ("section2", "Dilekler"),
    ("section3", "Fikirler"),
    ("section4", "Teşekkürler"),
    ("section5", "Duyurular"),
)


class SectionRegistry:
    """Ordered, immutable set of section keys the store accepts."""

    def __init__(self, sections=SECTIONS):
        self._titles: Dict[str, str] = {}
        for key, title in sections:
            if key in self._titles:
                raise ValueError(f"duplicate section key {key!r}")
            self._titles[key] = title

    def __contains__(self, key) -> bool:
        return isinstance(key, str) and key in self._titles

    def __iter__(self) -> Iterator[str]:
        return iter(self._titles)

    def __len__(self) -> int:
        return len(self._titles)

    def keys(self) -> List[str]:
        return list(self._titles)

    def title(self, key: str) -> str:
        return self._titles[key]

    def describe(self) -> List[Dict[str, str]]:
        return [{"key": k, "title": t} for k, t in self._titles.items()]
