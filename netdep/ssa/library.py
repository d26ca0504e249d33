"""Static knowledge about library packages netdep has no source for.

The loader only parses the analysed project, so the result types of
library calls, the methods gin promotes from embedded structs and a handful
of exported constants are listed here. Unknown library calls simply have
no type and resolve as unknown.
"""

from __future__ import annotations

_HTTP = "net/http"
_GIN = "github.com/gin-gonic/gin"

# signature -> result types
RETURN_TYPES: dict[str, tuple[str, ...]] = {
    f"{_HTTP}.Get": (f"*{_HTTP}.Response", "error"),
    f"{_HTTP}.Post": (f"*{_HTTP}.Response", "error"),
    f"{_HTTP}.Head": (f"*{_HTTP}.Response", "error"),
    f"{_HTTP}.PostForm": (f"*{_HTTP}.Response", "error"),
    f"{_HTTP}.NewRequest": (f"*{_HTTP}.Request", "error"),
    f"{_HTTP}.NewRequestWithContext": (f"*{_HTTP}.Request", "error"),
    f"{_HTTP}.NewServeMux": (f"*{_HTTP}.ServeMux",),
    f"(*{_HTTP}.Client).Do": (f"*{_HTTP}.Response", "error"),
    f"(*{_HTTP}.Client).Get": (f"*{_HTTP}.Response", "error"),
    f"(*{_HTTP}.Client).Post": (f"*{_HTTP}.Response", "error"),
    f"(*{_HTTP}.Client).Head": (f"*{_HTTP}.Response", "error"),
    f"(*{_HTTP}.Client).PostForm": (f"*{_HTTP}.Response", "error"),
    f"{_GIN}.Default": (f"*{_GIN}.Engine",),
    f"{_GIN}.New": (f"*{_GIN}.Engine",),
    f"(*{_GIN}.RouterGroup).Group": (f"*{_GIN}.RouterGroup",),
    "os.Getenv": ("string",),
    "os.LookupEnv": ("string", "bool"),
    "fmt.Sprintf": ("string",),
    "fmt.Sprint": ("string",),
    "strings.Join": ("string",),
    "strings.TrimSuffix": ("string",),
    "strings.TrimPrefix": ("string",),
}

# package-level library variables -> type
GLOBAL_TYPES: dict[str, str] = {
    f"{_HTTP}.DefaultClient": f"*{_HTTP}.Client",
    f"{_HTTP}.DefaultServeMux": f"*{_HTTP}.ServeMux",
}

# exported library constants the resolver may need
CONSTANTS: dict[str, str] = {
    f"{_HTTP}.MethodGet": "GET",
    f"{_HTTP}.MethodHead": "HEAD",
    f"{_HTTP}.MethodPost": "POST",
    f"{_HTTP}.MethodPut": "PUT",
    f"{_HTTP}.MethodPatch": "PATCH",
    f"{_HTTP}.MethodDelete": "DELETE",
    f"{_HTTP}.MethodConnect": "CONNECT",
    f"{_HTTP}.MethodOptions": "OPTIONS",
    f"{_HTTP}.MethodTrace": "TRACE",
}

# library types; a call to one of these is a conversion, not a function call
TYPES: frozenset[str] = frozenset(
    {
        f"{_HTTP}.Client",
        f"{_HTTP}.Server",
        f"{_HTTP}.ServeMux",
        f"{_HTTP}.Request",
        f"{_HTTP}.Response",
        f"{_HTTP}.Header",
        f"{_HTTP}.HandlerFunc",
        f"{_HTTP}.Handler",
        f"{_HTTP}.ResponseWriter",
        f"{_GIN}.Engine",
        f"{_GIN}.RouterGroup",
        f"{_GIN}.Context",
        f"{_GIN}.HandlerFunc",
        f"{_GIN}.H",
    }
)

INTERFACES: frozenset[str] = frozenset(
    {
        "error",
        "any",
        "interface{}",
        f"{_HTTP}.Handler",
        f"{_HTTP}.ResponseWriter",
        f"{_HTTP}.RoundTripper",
        "io.Reader",
        "io.Writer",
        "io.ReadCloser",
        "context.Context",
    }
)

# library types whose methods use value receivers
VALUE_RECEIVER_TYPES: frozenset[str] = frozenset(
    {
        f"{_HTTP}.HandlerFunc",
        f"{_HTTP}.Header",
    }
)

_ROUTER_METHODS = (
    "GET",
    "POST",
    "PUT",
    "DELETE",
    "PATCH",
    "HEAD",
    "OPTIONS",
    "Any",
    "Handle",
    "Group",
    "Use",
    "Static",
)

# type -> {method: type that actually declares it}
PROMOTED_METHODS: dict[str, dict[str, str]] = {
    f"{_GIN}.Engine": {m: f"{_GIN}.RouterGroup" for m in _ROUTER_METHODS if m != "Use"},
}

BUILTIN_TYPES: frozenset[str] = frozenset(
    {
        "bool",
        "byte",
        "complex64",
        "complex128",
        "error",
        "float32",
        "float64",
        "int",
        "int8",
        "int16",
        "int32",
        "int64",
        "rune",
        "string",
        "uint",
        "uint8",
        "uint16",
        "uint32",
        "uint64",
        "uintptr",
        "any",
    }
)

BUILTIN_FUNCTIONS: frozenset[str] = frozenset(
    {
        "append",
        "cap",
        "clear",
        "close",
        "complex",
        "copy",
        "delete",
        "imag",
        "len",
        "make",
        "max",
        "min",
        "new",
        "panic",
        "print",
        "println",
        "real",
        "recover",
    }
)


def is_interface(type_name: str) -> bool:
    return type_name.lstrip("*") in INTERFACES or type_name.startswith("interface")


def method_owner(type_name: str, method: str) -> str:
    """Return the type that declares ``method`` for library type ``type_name``."""
    bare = type_name.lstrip("*")
    return PROMOTED_METHODS.get(bare, {}).get(method, bare)
