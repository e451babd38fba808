from __future__ import annotations

import re

UNKNOWN_TAG = "loc:unknown"
EU_REMOTE_TAG = "loc:eu-remote"

EU_COUNTRIES = (
    "germany", "france", "italy", "spain", "netherlands", "belgium", "austria",
    "ireland", "denmark", "sweden", "finland", "norway", "switzerland",
    "poland", "czech republic", "czechia", "hungary", "romania", "bulgaria", "croatia",
    "slovenia", "slovakia", "estonia", "latvia", "lithuania", "luxembourg",
    "malta", "cyprus", "greece", "portugal", "iceland", "united kingdom", "uk", "england",
    "scotland", "wales", "northern ireland", "deutschland", "espana", "nederland",
)

EU_CITIES = (
    "berlin", "munich", "hamburg", "frankfurt", "cologne", "stuttgart", "dusseldorf",
    "paris", "lyon", "marseille", "toulouse", "nice", "nantes", "lille", "bordeaux",
    "madrid", "barcelona", "valencia", "seville", "bilbao", "malaga",
    "amsterdam", "rotterdam", "the hague", "utrecht", "eindhoven",
    "brussels", "antwerp", "ghent", "bruges",
    "vienna", "salzburg", "innsbruck", "graz",
    "dublin", "cork", "galway", "limerick",
    "copenhagen", "aarhus", "odense", "aalborg",
    "stockholm", "gothenburg", "malmo", "uppsala",
    "helsinki", "tampere", "turku", "oulu",
    "oslo", "bergen", "trondheim", "stavanger",
    "zurich", "geneva", "basel", "bern", "lausanne",
    "warsaw", "krakow", "wroclaw", "gdansk", "poznan",
    "prague", "brno", "ostrava", "plzen",
    "budapest", "debrecen", "szeged",
    "bucharest", "cluj-napoca", "timisoara", "iasi",
    "sofia", "plovdiv", "varna",
    "zagreb", "split", "rijeka",
    "ljubljana", "maribor",
    "bratislava", "kosice",
    "tallinn", "tartu",
    "riga", "vilnius", "kaunas",
    "luxembourg city", "valletta", "sliema",
    "nicosia", "limassol", "larnaca",
    "athens", "thessaloniki",
    "lisbon", "porto", "braga", "coimbra",
    "milan", "rome", "turin", "florence", "bologna", "naples",
    "london", "manchester", "birmingham", "edinburgh", "glasgow", "bristol", "leeds", "cambridge", "oxford",
    "belfast", "cardiff",
)

REGION_QUALIFIERS = ("eu", "europe", "european", "emea")


def _names_pattern(names: tuple[str, ...]) -> re.Pattern[str]:
    # Longest names first so "northern ireland" wins over "ireland".
    ordered = sorted(set(names), key=len, reverse=True)
    return re.compile(r"\b(?:" + "|".join(re.escape(name) for name in ordered) + r")\b")


_KNOWN_PLACE_RE = _names_pattern(EU_COUNTRIES + EU_CITIES)
_REGION_RE = _names_pattern(REGION_QUALIFIERS)
_SLUG_SPACES_RE = re.compile(r"\s+")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9-]")
_SLUG_DASHES_RE = re.compile(r"-{2,}")


def slugify(text: str) -> str:
    slug = _SLUG_SPACES_RE.sub("-", text.strip().lower())
    slug = _SLUG_STRIP_RE.sub("", slug)
    return _SLUG_DASHES_RE.sub("-", slug).strip("-")


def tag(location_text: str | None, is_remote: bool) -> list[str]:
    """Return exactly one ``loc:`` tag for a raw location string."""
    lowered = (location_text or "").strip().lower()
    if lowered and _KNOWN_PLACE_RE.search(lowered):
        slug = slugify(lowered)
        if slug:
            return [f"loc:{slug}"]
    if is_remote and _REGION_RE.search(lowered):
        return [EU_REMOTE_TAG]
    return [UNKNOWN_TAG]


def is_known(location_tag: str) -> bool:
    return location_tag.startswith("loc:") and location_tag != UNKNOWN_TAG
