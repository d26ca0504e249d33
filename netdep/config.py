"""Signature registry tables and analyser defaults.

This table IS the architecture. Teaching netdep about a new HTTP library
means adding rows here. Keys follow Go SSA naming: ``pkg/path.Func`` for
functions and ``(*pkg/path.Type).Method`` for methods. Method calls carry
the receiver as argument 0, so their argument indices start at 1.
"""

from __future__ import annotations

from dataclasses import dataclass

from netdep.core.types import DiscoveryAction


@dataclass(frozen=True)
class InterestingCall:
    """Registry row: what a signature means and which argument to resolve."""

    action: DiscoveryAction
    argument_index: int
    default: str | None = None  # used when the argument is absent


_CLIENT = DiscoveryAction.EMIT_CLIENT
_ENDPOINT = DiscoveryAction.EMIT_ENDPOINT
_SUBSTITUTE = DiscoveryAction.SUBSTITUTE

_GIN = "github.com/gin-gonic/gin"

INTERESTING_CALLS: dict[str, InterestingCall] = {
    # -- net/http client side --
    "(*net/http.Client).Do": InterestingCall(_CLIENT, 1),
    "(*net/http.Client).Get": InterestingCall(_CLIENT, 1),
    "(*net/http.Client).Post": InterestingCall(_CLIENT, 1),
    "(*net/http.Client).Head": InterestingCall(_CLIENT, 1),
    "(*net/http.Client).PostForm": InterestingCall(_CLIENT, 1),
    "net/http.Get": InterestingCall(_CLIENT, 0),
    "net/http.Post": InterestingCall(_CLIENT, 0),
    "net/http.Head": InterestingCall(_CLIENT, 0),
    "net/http.PostForm": InterestingCall(_CLIENT, 0),
    "net/http.NewRequest": InterestingCall(_CLIENT, 1),
    "net/http.NewRequestWithContext": InterestingCall(_CLIENT, 2),
    # -- net/http server side --
    "net/http.Handle": InterestingCall(_ENDPOINT, 0),
    "net/http.HandleFunc": InterestingCall(_ENDPOINT, 0),
    "(*net/http.ServeMux).Handle": InterestingCall(_ENDPOINT, 1),
    "(*net/http.ServeMux).HandleFunc": InterestingCall(_ENDPOINT, 1),
    "net/http.ListenAndServe": InterestingCall(_ENDPOINT, 0),
    "net/http.ListenAndServeTLS": InterestingCall(_ENDPOINT, 0),
    # -- gin router --
    f"(*{_GIN}.RouterGroup).GET": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.RouterGroup).POST": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.RouterGroup).PUT": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.RouterGroup).DELETE": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.RouterGroup).PATCH": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.RouterGroup).HEAD": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.RouterGroup).OPTIONS": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.RouterGroup).Any": InterestingCall(_ENDPOINT, 1),
    f"(*{_GIN}.Engine).Run": InterestingCall(_ENDPOINT, 1, default=":8080"),
    # -- substitutions --
    "os.Getenv": InterestingCall(_SUBSTITUTE, 0),
}

# Formatting calls the resolver evaluates: signature -> index of the format string
FORMATTERS: dict[str, int] = {
    "fmt.Sprintf": 0,
}

# Request constructors whose result carries a URL: signature -> URL argument
REQUEST_BUILDERS: dict[str, int] = {
    "net/http.NewRequest": 1,
    "net/http.NewRequestWithContext": 2,
}

# Packages never descended into (matched on full path or first segment)
IGNORE_LIST: frozenset[str] = frozenset(
    {
        "fmt",
        "reflect",
        "net/url",
        "strings",
        "bytes",
        "io",
        "errors",
        "runtime",
        "internal/reflectlite",
        "math/bits",
        "sync",
        "syscall",
        "unicode",
        "time",
        "strconv",
        "log",
        "os",
        "context",
        "encoding",
        "sort",
    }
)

DEFAULT_MAX_RECURSION_DEPTH: int = 16
MAX_RESOLUTION_DEPTH: int = 32

DEFAULT_PORT: str = ":80"
UNKNOWN_SERVICE_NAME: str = "UnknownService"
HTTP_PROTOCOL: str = "HTTP"
NATS_PROTOCOL: str = "NATS"
SERVICECALLS_PROTOCOL: str = "servicecalls"
SERVICECALLS_PACKAGE: str = "servicecalls"
