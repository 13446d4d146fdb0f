# common/protocol.py
# Request / error-reply grammar shared by the MP3 server and client.

import os           # strerror for file error diagnostics
import re           # error record recognition
from collections import namedtuple
from enum import Enum, IntEnum

#### Constants ####
ENC = "utf-8"               # Encoding for request and error text
DEFAULT_PORT = 8080         # Server port when none is given
BUFFER_SIZE = 256           # One request read / one file chunk
DIGEST_SIZE = 32            # SHA-256 digest length in bytes
MP3_EXTENSION = ".mp3"      # Marker a served filename must contain


#### Operations and error codes ####
class Operation(Enum):
    """Closed set of RPC operations. Values are the wire keywords."""
    LIST = "LIST"
    SEARCH = "SEARCH"
    DOWNLOAD = "DOWNLOAD"


class ErrorTag(Enum):
    FILE_ERROR = "FILEERROR"
    RPC_ERROR = "RPCERROR"


class RpcErrorCode(IntEnum):
    BAD_OPERATION = -1
    TOO_FEW_ARGS = -2
    TOO_MANY_ARGS = -3


RPC_ERROR_MESSAGES = {
    RpcErrorCode.BAD_OPERATION: "Illegal operation (must be LIST, SEARCH or DOWNLOAD)",
    RpcErrorCode.TOO_FEW_ARGS: "Too few arguments for operation",
    RpcErrorCode.TOO_MANY_ARGS: "Too many arguments for operation",
}

# Operations that carry exactly one argument.
_NEEDS_ARGUMENT = (Operation.SEARCH, Operation.DOWNLOAD)

# "<TAG> <code>" with optional NUL / whitespace padding (C servers pad to the buffer size).
_ERROR_RE = re.compile(rb"^(FILEERROR|RPCERROR) (-?\d+)[\x00\s]*$")


#### Value types ####
Request = namedtuple("Request", ["operation", "argument"], defaults=(None,))

ErrorRecord = namedtuple("ErrorRecord", ["tag", "code"])


class RpcError(Exception):
    """
    Raised when a request cannot be decoded.

    The server turns this into an RPCERROR record for the peer.
    """
    def __init__(self, code):
        self.code = RpcErrorCode(code)
        super().__init__(RPC_ERROR_MESSAGES[self.code])

    @property
    def record(self):
        return ErrorRecord(ErrorTag.RPC_ERROR, int(self.code))


class ServerError(Exception):
    """Raised on the client when the server answered with an error record."""
    def __init__(self, record):
        self.record = record
        super().__init__(describe_error(record))

    @property
    def permanent(self):
        """True for RPC errors, which no retry of the same request can fix."""
        return self.record.tag is ErrorTag.RPC_ERROR


#### Requests ####
def encode(request):
    """
    Format a request for the wire.

    Returns:
        bytes: "<OP>" for LIST, "<OP> <argument>" otherwise.

    Raises:
        ValueError: If the argument is missing or blank where one is
                    required, starts with whitespace, or contains a line
                    terminator. decode() could not give such an argument back.
    """
    op = Operation(request.operation)
    if op not in _NEEDS_ARGUMENT:
        return op.value.encode(ENC)

    arg = request.argument
    if not arg or not arg.strip():
        raise ValueError(f"{op.value} requires an argument")
    if arg != arg.lstrip():
        raise ValueError("Argument cannot start with whitespace")
    if "\n" in arg or "\r" in arg:
        raise ValueError("Argument cannot contain a line terminator")
    return f"{op.value} {arg}".encode(ENC)


def decode(data):
    """
    Parse one request received from a client.

    The first whitespace-delimited token is the operation keyword
    (case-sensitive). Everything after the first whitespace run is the
    argument, with only the trailing line terminator removed.

    Parameters:
        data (bytes): Raw request bytes from a single read.

    Returns:
        Request: Decoded request. LIST never carries an argument.

    Raises:
        RpcError: BAD_OPERATION for an unknown keyword, TOO_FEW_ARGS for an
                  empty request or a SEARCH/DOWNLOAD without argument.
    """
    text = data.split(b"\x00", 1)[0].decode(ENC, errors="replace")
    if text.endswith("\r\n"):
        text = text[:-2]
    elif text.endswith("\n"):
        text = text[:-1]

    parts = text.lstrip().split(None, 1)
    if not parts:
        raise RpcError(RpcErrorCode.TOO_FEW_ARGS)

    try:
        op = Operation(parts[0])
    except ValueError:
        raise RpcError(RpcErrorCode.BAD_OPERATION) from None

    remainder = parts[1] if len(parts) == 2 else ""

    if op not in _NEEDS_ARGUMENT:
        # A trailing argument on LIST is tolerated and dropped.
        return Request(op)

    if not remainder:
        raise RpcError(RpcErrorCode.TOO_FEW_ARGS)
    return Request(op, remainder)


#### Error records ####
def encode_error(record):
    """Format an error record as "<TAG> <code>"."""
    return f"{ErrorTag(record.tag).value} {int(record.code)}".encode(ENC)


def file_error(exc):
    """Build a FILE_ERROR record from an OSError (errno 0 when the host gave none)."""
    return ErrorRecord(ErrorTag.FILE_ERROR, exc.errno or 0)


def decode_error(chunk):
    """
    Recognise a reply chunk that is exactly one error record.

    Returns:
        ErrorRecord | None: The record, or None if the chunk is ordinary data.
    """
    match = _ERROR_RE.match(chunk)
    if match is None:
        return None
    return ErrorRecord(ErrorTag(match.group(1).decode(ENC)), int(match.group(2)))


def describe_error(record):
    """Human-readable text for an error record."""
    if record.tag is ErrorTag.FILE_ERROR:
        return f"Server file error: {os.strerror(record.code)} (errno {record.code})"
    try:
        message = RPC_ERROR_MESSAGES[RpcErrorCode(record.code)]
    except ValueError:
        message = "Unknown RPC error"
    return f"Server RPC error: {message} (code {record.code})"


#### Startup parameters ####
def parse_port(text):
    """
    Parse a TCP port number.

    Raises:
        ValueError: If the text is not an integer in 1-65535.
    """
    try:
        port = int(text)
    except (TypeError, ValueError):
        raise ValueError(f"Port must be an integer, got '{text}'") from None
    if not (1 <= port <= 65535):
        raise ValueError(f"Port must be between 1-65535, got {port}")
    return port


def parse_target(text):
    """
    Split a "host[:port]" client target.

    Returns:
        tuple[str, int]: (host, port); port defaults to DEFAULT_PORT.

    Raises:
        ValueError: If the host part is empty or the port is invalid.
    """
    text = (text or "").strip()
    host, sep, port_text = text.partition(":")
    host = host.strip()
    if not host:
        raise ValueError("Missing server host")
    if not sep:
        return host, DEFAULT_PORT
    return host, parse_port(port_text)
