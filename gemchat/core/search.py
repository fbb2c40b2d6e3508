"""Lookup data behind the chat input's autocomplete.

``person`` searches run over a generated directory of a million names. The
names are derived from their index, so the directory is never materialised;
a search checks each repeating base name once per query and stops as soon
as it has ``limit`` hits.
"""
from collections import defaultdict
from itertools import islice
from typing import Dict, Iterator, List

FIRST_NAMES = [
    "James", "Mary", "John", "Patricia", "Robert", "Jennifer", "Michael", "Linda",
    "William", "Elizabeth", "David", "Barbara", "Richard", "Susan", "Joseph", "Jessica",
    "Thomas", "Sarah", "Charles", "Karen", "Christopher", "Nancy", "Daniel", "Lisa",
    "Matthew", "Betty", "Anthony", "Margaret", "Mark", "Sandra", "Donald", "Ashley",
]

LAST_NAMES = [
    "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis",
    "Rodriguez", "Martinez", "Hernandez", "Lopez", "Gonzalez", "Wilson", "Anderson", "Thomas",
    "Taylor", "Moore", "Jackson", "Martin", "Lee", "Perez", "Thompson", "White",
    "Harris", "Sanchez", "Clark", "Ramirez", "Lewis", "Robinson", "Walker", "Young",
]

GENERAL_TOPICS = [
    "How to build a web application",
    "Best practices for React development",
    "TypeScript advanced patterns",
    "Database optimization techniques",
    "API design principles",
    "Machine learning fundamentals",
    "Cloud architecture patterns",
    "Security best practices",
]

DIRECTORY_SIZE = 1_000_000
SEARCH_TYPES = ("general", "person")
CYCLE = len(FIRST_NAMES) * len(LAST_NAMES)


def person_name(index: int) -> str:
    """Name at a position of the generated directory"""
    first = FIRST_NAMES[index % len(FIRST_NAMES)]
    last = LAST_NAMES[(index // len(FIRST_NAMES)) % len(LAST_NAMES)]
    suffix = f" {index // CYCLE + 1}" if index >= CYCLE else ""
    return f"{first} {last}{suffix}"


_BASE_NAMES = [person_name(i).lower() for i in range(CYCLE)]


def iter_people(size: int = DIRECTORY_SIZE) -> Iterator[str]:
    return (person_name(i) for i in range(size))


def iter_matching_people(needle: str, size: int = DIRECTORY_SIZE) -> Iterator[str]:
    """Names containing the lowercase ``needle``, in directory order

    Every cycle of ``CYCLE`` names repeats the same base names with a new
    suffix. A base either contains the needle on its own, or the needle
    overlaps the suffix, which only involves the base's last
    ``len(needle) - 1`` characters. Each cycle is therefore checked against
    the distinct tails instead of every name.
    """
    plain = {i for i, base in enumerate(_BASE_NAMES) if needle in base}
    keep = max(len(needle) - 1, 0)
    tails: Dict[str, List[int]] = defaultdict(list)
    for i, base in enumerate(_BASE_NAMES):
        tails[base[max(len(base) - keep, 0):]].append(i)

    for cycle in range(-(-size // CYCLE)):
        hits = set(plain)
        if cycle:
            suffix = f" {cycle + 1}"
            for tail, indices in tails.items():
                if needle in tail + suffix:
                    hits.update(indices)
        for i in sorted(hits):
            index = cycle * CYCLE + i
            if index >= size:
                return
            yield person_name(index)


def search(query: str, type_: str = "general", limit: int = 10) -> List[Dict[str, str]]:
    """Case-insensitive substring search over people or general topics"""
    needle = (query or "").lower()
    limit = max(limit, 0)
    if type_ == "person":
        hits = islice(iter_matching_people(needle), limit)
        return [{"id": f"person-{i}", "text": name, "type": "person"} for i, name in enumerate(hits)]

    hits = [topic for topic in GENERAL_TOPICS if needle in topic.lower()][:limit]
    return [{"id": f"general-{i}", "text": text, "type": "general"} for i, text in enumerate(hits)]
