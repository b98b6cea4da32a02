#!/usr/bin/env python3
"""
Profile README updater.

Collects GitHub statistics for the authenticated user, merges them with the
static profile facts from defaults.ini, fills template.txt and commits the
result back to <login>/<login> as readme.md.

Stats:
- Age / employment tenure
- Owned repositories
- Contributions (GraphQL, chunked by year)
- Lines of Code (commit search, chunked by month)

Environment Variables:
  TOKEN            : Personal token (name can be changed in [authentication]).
  CONFIG_PATH      : INI profile description. Default defaults.ini next to this file.
  TEMPLATE_PATH    : Text template. Default template.txt next to this file.
  DEBUG            : '1' => verbose output.
  DRY_RUN          : '1' => print the rendered readme instead of committing it.
  RATE_LIMIT       : 'fixed' (default) or 'headers'.
  RATE_LIMIT_DELAY : Seconds between monthly LOC chunks. Default 2.

Note: every request runs sequentially. Large accounts take a while.
"""

from __future__ import annotations
import os
import re
import time
import base64
import datetime
import configparser
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Any, List, Tuple, Optional, Union

import requests
from dateutil import parser as date_parser
from dateutil import relativedelta

# ------------------ Config & Env ------------------
REPO_ROOT = Path(__file__).resolve().parent
CONFIG_PATH = os.environ.get("CONFIG_PATH") or str(REPO_ROOT / "defaults.ini")
TEMPLATE_PATH = os.environ.get("TEMPLATE_PATH") or str(REPO_ROOT / "template.txt")

DEBUG = os.environ.get("DEBUG", "0") == "1"
DRY_RUN = os.environ.get("DRY_RUN", "0") == "1"
RATE_LIMIT = os.environ.get("RATE_LIMIT", "fixed")
RATE_LIMIT_DELAY = float(os.environ.get("RATE_LIMIT_DELAY", "2"))

API_URL = "https://api.github.com"
GRAPHQL_URL = f"{API_URL}/graphql"
REQUEST_TIMEOUT = 40
PER_PAGE = 100

README_PATH = "readme.md"
COMMIT_MESSAGE = "chore: update generated content"

COLUMN_WIDTH = 64
COLUMN_PADDING = 5
FILLER = "."
MISSING_VALUE = "N/A"
PLACEHOLDER_PATTERN = re.compile(r"{{(.*?)}}")


def debug(msg: str):
    if DEBUG:
        print(f"[DEBUG] {msg}")


# ------------------ Configuration ------------------
@dataclass(frozen=True)
class Configuration:
    full_name: Optional[str] = None
    birth_date: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    email_address: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    start_date: Optional[str] = None
    machine: Optional[str] = None
    operating_system: Optional[str] = None
    ide: Optional[str] = None
    terminal: Optional[str] = None
    token_variable: str = "TOKEN"


CONFIG_SECTIONS = {
    "profile": ["full_name", "birth_date", "location", "website", "email_address"],
    "employment": ["company", "job_title", "start_date"],
    "development": ["machine", "operating_system", "ide", "terminal"],
    "authentication": ["token_variable"],
}


def load_configuration(path: Union[str, Path]) -> Configuration:
    """Parse the INI profile description. Missing keys stay None and render as N/A."""
    print("Loading configuration...")
    parser = configparser.ConfigParser(interpolation=None)
    with open(path, "r", encoding="utf-8") as f:
        parser.read_file(f)

    values: Dict[str, str] = {}
    for section, keys in CONFIG_SECTIONS.items():
        if not parser.has_section(section):
            debug(f"config: section [{section}] missing")
            continue
        for key in keys:
            if parser.has_option(section, key):
                values[key] = parser.get(section, key).strip()
    return Configuration(**values)


# ------------------ Dates ------------------
@dataclass(frozen=True)
class DateRange:
    """Half-open interval [start, end) in UTC."""
    start: datetime.datetime
    end: datetime.datetime

    @property
    def from_iso(self) -> str:
        return self.start.strftime("%Y-%m-%dT%H:%M:%SZ")

    @property
    def to_iso(self) -> str:
        return self.end.strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def parse_date(value: Union[str, datetime.datetime]) -> datetime.datetime:
    """Accept an ISO-8601 string or datetime; naive values are taken as UTC."""
    if isinstance(value, str):
        value = date_parser.isoparse(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value


def calculate_date_ranges(chunk: str, from_year: int, from_month: int = 1,
                          now: Optional[datetime.datetime] = None) -> List[DateRange]:
    """
    Split [start, now) into calendar months or years.
    from_month is 1-based and ignored for yearly chunks.
    """
    if chunk not in ("month", "year"):
        raise ValueError(f"Unknown chunk granularity: {chunk!r}")
    now = now or utc_now()
    step = relativedelta.relativedelta(months=1) if chunk == "month" else relativedelta.relativedelta(years=1)
    month = from_month if chunk == "month" else 1
    current = datetime.datetime(from_year, month, 1, tzinfo=datetime.timezone.utc)

    ranges: List[DateRange] = []
    while current < now:
        nxt = current + step
        ranges.append(DateRange(current, nxt))
        current = nxt
    return ranges


def calculate_duration(since: Union[str, datetime.datetime],
                       now: Optional[datetime.datetime] = None) -> relativedelta.relativedelta:
    return relativedelta.relativedelta(now or utc_now(), parse_date(since))


def format_plural(unit: int) -> str:
    return "s" if unit != 1 else ""


def format_duration(diff: relativedelta.relativedelta) -> str:
    """e.g. '3 years, 1 month, 12 days'"""
    return "{} year{}, {} month{}, {} day{}".format(
        diff.years, format_plural(diff.years),
        diff.months, format_plural(diff.months),
        diff.days, format_plural(diff.days),
    )


# ------------------ Rate Limiting ------------------
class FixedDelay:
    """Sleep a fixed interval between chunks regardless of the API state."""

    def __init__(self, seconds: float = 2.0):
        self.seconds = seconds

    def wait(self, response: Optional[requests.Response] = None):
        if self.seconds > 0:
            time.sleep(self.seconds)


class HeaderBackoff:
    """
    Sleep until X-RateLimit-Reset when the remaining quota is at or below
    `threshold`, otherwise behave like FixedDelay(delay).
    """

    def __init__(self, delay: float = 2.0, threshold: int = 1):
        self.delay = delay
        self.threshold = threshold

    def wait(self, response: Optional[requests.Response] = None):
        pause = self.delay
        if response is not None:
            remaining = response.headers.get("X-RateLimit-Remaining")
            reset = response.headers.get("X-RateLimit-Reset")
            if remaining is not None and reset is not None and int(remaining) <= self.threshold:
                pause = max(int(reset) - int(time.time()), 0) + 1
                print(f"[WARN] Rate limit nearly exhausted ({remaining} left); sleeping {pause}s")
        if pause > 0:
            time.sleep(pause)


RATE_LIMITERS = {
    "fixed": FixedDelay,
    "headers": HeaderBackoff,
}


def make_rate_limiter(name: str = "fixed", delay: float = 2.0):
    try:
        cls = RATE_LIMITERS[name]
    except KeyError:
        raise ValueError(f"Unknown RATE_LIMIT strategy: {name!r}") from None
    return cls(delay)


# ------------------ GitHub Client ------------------
class GitHub:
    """Thin requests wrapper. Each method performs exactly one HTTP call."""

    def __init__(self, token: Optional[str]):
        self.headers = {"Accept": "application/vnd.github+json"}
        if token:
            self.headers["Authorization"] = f"token {token}"

    def _url(self, path: str) -> str:
        return path if path.startswith("http") else f"{API_URL}{path}"

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        r = requests.get(self._url(path), params=params, headers=self.headers, timeout=REQUEST_TIMEOUT)
        r.raise_for_status()
        return r

    def put(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        r = requests.put(self._url(path), json=payload, headers=self.headers, timeout=REQUEST_TIMEOUT)
        r.raise_for_status()
        return r

    def pages(self, path: str, params: Optional[Dict[str, Any]] = None):
        """Yield one response per page, following the Link rel="next" header."""
        url = self._url(path)
        params = dict(params or {})
        params.setdefault("per_page", PER_PAGE)
        while url:
            r = self.get(url, params=params)
            yield r
            url = r.links.get("next", {}).get("url")
            # next links already carry the query string
            params = None

    def graphql(self, query: str, variables: Dict[str, Any], tag: str) -> Dict[str, Any]:
        r = requests.post(
            GRAPHQL_URL,
            json={"query": query, "variables": variables},
            headers=self.headers,
            timeout=REQUEST_TIMEOUT
        )
        if r.status_code != 200:
            raise RuntimeError(f"{tag} failed: {r.status_code} {r.text[:300]}")
        data = r.json()
        if data.get("errors"):
            messages = " | ".join(e.get("message", "") for e in data["errors"])
            raise RuntimeError(f"{tag} GraphQL errors: {messages}")
        return data["data"]


# ------------------ Data Collection ------------------
def fetch_user(client: GitHub) -> Tuple[Dict[str, Any], int]:
    """Return the authenticated user's record (login, created_at, ...)."""
    user = client.get("/user").json()
    debug(f"user: {user.get('login')} created {user.get('created_at')}")
    return user, 1


def fetch_repositories(client: GitHub) -> Tuple[List[Dict[str, Any]], int]:
    repos: List[Dict[str, Any]] = []
    calls = 0
    for page in client.pages("/user/repos", {"affiliation": "owner"}):
        calls += 1
        repos.extend(page.json())
    debug(f"repositories: {len(repos)} over {calls} page(s)")
    return repos, calls


CONTRIBUTIONS_QUERY = """
query($login: String!, $start: DateTime!, $end: DateTime!){
  user(login: $login){
    contributionsCollection(from: $start, to: $end){
      contributionCalendar{ totalContributions }
    }
  }
}"""


def fetch_contributions(client: GitHub, username: str, since: Union[str, datetime.datetime],
                        now: Optional[datetime.datetime] = None) -> Tuple[int, int]:
    """
    Total contributions since `since`, queried one calendar year at a time
    (contributionsCollection spans at most a year).
    Returns (total, api_calls).
    """
    print("Searching for contributions...")
    start = parse_date(since)
    contributions = calls = 0
    for rng in calculate_date_ranges("year", start.year, now=now):
        data = client.graphql(
            CONTRIBUTIONS_QUERY,
            {"login": username, "start": rng.from_iso, "end": rng.to_iso},
            "contributions"
        )
        calls += 1
        year_total = data["user"]["contributionsCollection"]["contributionCalendar"]["totalContributions"]
        debug(f"contributions {rng.from_iso[:4]}: {year_total}")
        contributions += year_total
    print(f"Found {contributions} total contributions")
    return contributions, calls


def fetch_lines_of_code(client: GitHub, username: str, since: Union[str, datetime.datetime],
                        limiter=None, now: Optional[datetime.datetime] = None) -> Tuple[int, int, int]:
    """
    Sum additions/deletions over every commit authored by `username`.

    Commit search caps out at 1000 results per query, so the history is
    walked one calendar month at a time. Each commit needs its own detail
    request for stats. Returns (additions, deletions, api_calls).
    """
    print("Analyzing lines of code...")
    if limiter is None:
        limiter = FixedDelay(2.0)
    start = parse_date(since)
    additions = deletions = calls = 0

    for rng in calculate_date_ranges("month", start.year, start.month, now=now):
        q = f"author:{username} committer-date:{rng.from_iso}..{rng.to_iso}"
        commits: List[Dict[str, Any]] = []
        search_page = None
        for search_page in client.pages("/search/commits", {"q": q}):
            calls += 1
            commits.extend(search_page.json().get("items", []))

        month_add = month_del = 0
        for commit in commits:
            stats = client.get(commit["url"]).json()["stats"]
            calls += 1
            month_add += stats["additions"]
            month_del += stats["deletions"]
        debug(f"[LOC] {rng.from_iso[:7]}: commits={len(commits)} add={month_add} del={month_del}")
        additions += month_add
        deletions += month_del

        # search has its own, much smaller quota than the core API
        limiter.wait(search_page)

    print(f"Found {additions + deletions} lines of code (+{additions} / -{deletions})")
    return additions, deletions, calls


# ------------------ Stats ------------------
STRING_FIELDS = ("name", "location", "website", "email", "company", "role", "machine", "os", "ide", "terminal")
DURATION_FIELDS = ("age", "tenure")
COUNT_FIELDS = ("repositories", "contributions", "additions", "deletions")


@dataclass(frozen=True)
class ProfileStats:
    """
    Everything the template can show. Profile facts and durations are None
    when the configuration lacks them; as_placeholders() leaves those keys
    out so the renderer prints N/A.
    """
    name: Optional[str] = None
    age: Optional[relativedelta.relativedelta] = None
    location: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    tenure: Optional[relativedelta.relativedelta] = None
    machine: Optional[str] = None
    os: Optional[str] = None
    ide: Optional[str] = None
    terminal: Optional[str] = None
    repositories: int = 0
    contributions: int = 0
    additions: int = 0
    deletions: int = 0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in COUNT_FIELDS:
                if not isinstance(value, int) or isinstance(value, bool):
                    raise TypeError(f"{f.name} must be an int, got {type(value).__name__}")
                if value < 0:
                    raise ValueError(f"{f.name} must not be negative: {value}")
            elif value is None:
                continue
            elif f.name in DURATION_FIELDS:
                if not isinstance(value, relativedelta.relativedelta):
                    raise TypeError(f"{f.name} must be a relativedelta, got {type(value).__name__}")
            elif not isinstance(value, str):
                raise TypeError(f"{f.name} must be a str, got {type(value).__name__}")

    @property
    def lines_of_code(self) -> int:
        return self.additions + self.deletions

    def as_placeholders(self) -> Dict[str, str]:
        placeholders = {key: getattr(self, key) for key in STRING_FIELDS}
        placeholders.update({
            "age": format_duration(self.age) if self.age is not None else None,
            "joined": f"{format_duration(self.tenure)} ago" if self.tenure is not None else None,
            "repositories": str(self.repositories),
            "contributions": str(self.contributions),
            "lines_of_code": f"{self.lines_of_code} (+{self.additions} / -{self.deletions})",
        })
        return {key: value for key, value in placeholders.items() if value is not None}


def optional_duration(since: Optional[str],
                      now: Optional[datetime.datetime] = None) -> Optional[relativedelta.relativedelta]:
    if not since:
        return None
    return calculate_duration(since, now)


def build_stats(config: Configuration, now: Optional[datetime.datetime] = None, **counts: int) -> ProfileStats:
    """Static facts come from `config`; counts are keyword args (repositories=.., ...)."""
    now = now or utc_now()
    return ProfileStats(
        name=config.full_name,
        age=optional_duration(config.birth_date, now),
        location=config.location,
        website=config.website,
        email=config.email_address,
        company=config.company,
        role=config.job_title,
        tenure=optional_duration(config.start_date, now),
        machine=config.machine,
        os=config.operating_system,
        ide=config.ide,
        terminal=config.terminal,
        **counts,
    )


# ------------------ Template ------------------
def render_template(template: str, stats: Dict[str, str]) -> str:
    """
    Replace every {{key}} with a run of dots and the value so that
    key + dots + value lines up at COLUMN_WIDTH - COLUMN_PADDING.
    Unknown keys render as N/A.
    """
    def replace(match: re.Match) -> str:
        key = match.group(1)
        value = stats.get(key.strip())
        if value is None:
            value = MISSING_VALUE
        dots = FILLER * max(0, COLUMN_WIDTH - COLUMN_PADDING - len(key) - len(value))
        return f"{dots} {value}"

    return PLACEHOLDER_PATTERN.sub(replace, template)


def populate_template(path: Union[str, Path], stats: Dict[str, str]) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return render_template(f.read(), stats)


# ------------------ Publish ------------------
def commit_populated_template(client: GitHub, owner: str, content: str) -> int:
    """
    Overwrite readme.md in <owner>/<owner>. The current blob sha is sent back
    with the update; GitHub answers 409 if someone else wrote in between.
    """
    print("Committing populated template to GitHub...")
    repo = f"/repos/{owner}/{owner}"
    sha = client.get(f"{repo}/readme").json()["sha"]
    debug(f"readme sha: {sha}")
    client.put(f"{repo}/contents/{README_PATH}", {
        "message": COMMIT_MESSAGE,
        "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        "sha": sha,
    })
    print("Populated template committed successfully")
    return 2


# ------------------ Main ------------------
def main():
    t0 = time.time()
    config = load_configuration(CONFIG_PATH)
    token = os.environ.get(config.token_variable)
    if not token:
        print(f"[WARN] {config.token_variable} is not set; requests will be unauthenticated.")
    client = GitHub(token)
    limiter = make_rate_limiter(RATE_LIMIT, RATE_LIMIT_DELAY)

    calls: Dict[str, int] = {}
    user, calls["user"] = fetch_user(client)
    login, created = user["login"], user["created_at"]
    repos, calls["repositories"] = fetch_repositories(client)
    contributions, calls["contributions"] = fetch_contributions(client, login, created)
    additions, deletions, calls["lines_of_code"] = fetch_lines_of_code(client, login, created, limiter)

    stats = build_stats(
        config,
        repositories=len(repos),
        contributions=contributions,
        additions=additions,
        deletions=deletions,
    )
    readme = populate_template(TEMPLATE_PATH, stats.as_placeholders())

    if DRY_RUN:
        print("DRY_RUN=1, not committing. Rendered readme:")
        print(readme)
    else:
        calls["publish"] = commit_populated_template(client, login, readme)

    print("Done in {:.2f}s".format(time.time() - t0))
    print(f"API request counts: {calls} (total {sum(calls.values())})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
