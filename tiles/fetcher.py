from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Hashable, Optional, Tuple, Union

import requests

from common.logging_setup import get_logger
from common.types import RasterKind, TileCoordinate
from tiles.providers import TileProviders


log = get_logger("tiles.fetcher")

DEFAULT_REFERER = "https://www.google.com/maps"

PENDING = "pending"
DONE = "done"
FAILED = "failed"


class FetchError(RuntimeError):
    """Transport or HTTP failure; nothing was cached."""


def fetch_or_reuse(
    url: str,
    local_path: Union[str, Path],
    *,
    session: Optional[requests.Session] = None,
    referer: str = DEFAULT_REFERER,
    timeout: float = 30.0,
) -> str:
    """
    Return `local_path`, downloading `url` into it first if the file is absent.

    An existing file is trusted as-is (no revalidation, TTL or checksum).
    The body is written straight to the final path, so an interrupted write
    leaves a truncated file that later calls will reuse.
    """
    path = Path(local_path)
    if path.exists():
        log.debug("cache hit %s", path)
        return str(path)

    getter = session.get if session is not None else requests.get
    try:
        r = getter(url, headers={"Referer": referer}, timeout=timeout)
    except requests.RequestException as e:
        raise FetchError(f"GET {url} failed: {e}") from e
    if r.status_code != 200:
        raise FetchError(f"GET {url} returned {r.status_code}")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as f:
            f.write(r.content)
    except OSError as e:
        raise FetchError(f"cannot write {path}: {e}") from e
    log.info("downloaded %s (%d bytes)", path, len(r.content))
    return str(path)


@dataclass
class _Entry:
    status: str = PENDING
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[str] = None
    error: Optional[BaseException] = None


class RequestCoalescer:
    """
    At most one in-flight call per key.

    The first caller for a key runs `fn`; concurrent callers block on the
    same entry and share its outcome. Successful results stay cached as
    `done`; a failure is handed to the waiters and then forgotten so a later
    cycle can try again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def status(self, key: Hashable) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            return entry.status if entry else None

    def run(self, key: Hashable, fn: Callable[[], str]) -> str:
        with self._lock:
            entry = self._entries.get(key)
            owner = entry is None
            if owner:
                entry = _Entry()
                self._entries[key] = entry

        if not owner:
            entry.done.wait()
            if entry.status == DONE:
                return entry.result  # type: ignore[return-value]
            raise FetchError(f"coalesced request for {key} failed: {entry.error}") from entry.error

        try:
            result = fn()
        except BaseException as e:
            with self._lock:
                entry.status = FAILED
                entry.error = e
                self._entries.pop(key, None)
            raise
        else:
            with self._lock:
                entry.status = DONE
                entry.result = result
            return result
        finally:
            # waiters must wake even on KeyboardInterrupt/SystemExit
            entry.done.set()


class TileFetcher:
    """
    Download-or-reuse of imagery/elevation rasters for tile coordinates.

    Thread-safe: work units on a pool share one fetcher, and the coalescer
    keeps two of them from downloading the same file at once.
    """

    def __init__(
        self,
        providers: Optional[TileProviders] = None,
        *,
        session: Optional[requests.Session] = None,
        session_per_thread: bool = False,
        referer: str = DEFAULT_REFERER,
        timeout: float = 30.0,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        """
        Params:
            session: one session used by every caller (caller guarantees thread safety)
            session_per_thread: lazily give each pool thread its own requests.Session
            With neither, each download goes through plain requests.get.
        """
        self.providers = providers or TileProviders()
        self.session = session
        self.session_per_thread = session_per_thread
        self.referer = referer
        self.timeout = timeout
        self.coalescer = coalescer or RequestCoalescer()
        self._local = threading.local()

    @classmethod
    def from_config(cls, cfg: Dict) -> "TileFetcher":
        t = cfg.get("tiles", {})
        providers = TileProviders(
            cache_root=t.get("cache_root", "assets/images"),
            elevation_source=t.get("elevation_source", "opentopography"),
            api_key=t.get("opentopography_api_key"),
        )
        return cls(
            providers,
            session_per_thread=True,
            referer=t.get("referer", DEFAULT_REFERER),
            timeout=float(t.get("timeout_s", 30.0)),
        )

    def current_session(self) -> Optional[requests.Session]:
        """Session for the calling thread (None -> plain requests.get)."""
        if self.session is not None or not self.session_per_thread:
            return self.session
        s = getattr(self._local, "session", None)
        if s is None:
            s = requests.Session()
            self._local.session = s
        return s

    def fetch(self, coord: TileCoordinate, kind: RasterKind) -> str:
        """Local path of the raster for (coord, kind). Raises FetchError."""
        req = self.providers.request(coord, kind)
        key: Tuple[TileCoordinate, RasterKind] = (coord, kind)
        return self.coalescer.run(
            key,
            lambda: fetch_or_reuse(
                req.url, req.local_path, session=self.current_session(), referer=self.referer, timeout=self.timeout
            ),
        )

    def imagery(self, coord: TileCoordinate) -> str:
        return self.fetch(coord, RasterKind.IMAGERY)

    def elevation(self, coord: TileCoordinate) -> str:
        return self.fetch(coord, RasterKind.ELEVATION)
