# server/file_ops.py
# Handles the LIST, SEARCH, and DOWNLOAD operations against the served MP3 directory.

import errno        # error numbers for refused paths
import hashlib      # SHA-256 digest of streamed files
import os           # directory scans and paths
from analysis.performance_eval import timed, OUTCOME_ERROR
from common import protocol
from common.protocol import MP3_EXTENSION

#### Paths and constants ####
BASE_DIR = os.path.dirname(__file__)

# Directory whose MP3 files are offered to clients.
SERVED_DIR = os.path.join(os.path.dirname(BASE_DIR), "sample-mp3s")

# Bytes read from disk and written to the channel per step.
CHUNK_SIZE = protocol.BUFFER_SIZE


#### Path helpers ####
def init_served_dir(path=SERVED_DIR):
    """Make sure the served directory exists and return its absolute path."""
    os.makedirs(path, exist_ok=True)
    return os.path.abspath(path)


def resolve_path(served_dir, name):
    """
    Map a requested filename to a real path inside served_dir.

    Symlinks are resolved first, so a link pointing out of the served
    directory is refused like a "../" name.

    Raises:
        PermissionError: If the name resolves outside the served directory.
    """
    base = os.path.realpath(served_dir)
    target = os.path.realpath(os.path.join(base, name))

    try:
        common = os.path.commonpath([base, target])
    except ValueError:
        common = None

    if common != base or target == base:
        raise PermissionError(errno.EACCES, os.strerror(errno.EACCES), name)
    return target


#### Directory scans ####
def list_files(served_dir):
    """
    Names of regular files in served_dir containing the MP3 marker,
    in the order the directory yields them.

    Raises:
        OSError: If the directory cannot be opened.
    """
    with os.scandir(served_dir) as entries:
        return [
            entry.name for entry in entries
            if MP3_EXTENSION in entry.name and entry.is_file(follow_symlinks=False)
        ]


def search_files(served_dir, term):
    """Subset of list_files() whose names contain term (case-sensitive)."""
    return [name for name in list_files(served_dir) if term in name]


#### File Stream Transfer ####
def send_file(path, sink, chunk_size=CHUNK_SIZE):
    """
    Stream a file to sink followed by its SHA-256 digest.

    The file is read in chunk_size pieces; each piece is written with
    sink.sendall() as soon as it is read and fed to the running digest.
    After end-of-file the DIGEST_SIZE-byte digest is written as the last
    block of the stream.

    Parameters:
        path (str): File to send.
        sink: Object with sendall(bytes), e.g. an ssl.SSLSocket.

    Returns:
        tuple[bytes, int]: (digest, content bytes sent)

    Raises:
        OSError: If the file cannot be opened or read (nothing has been
                 written when open fails), or if the sink fails.
    """
    digest = hashlib.sha256()
    sent = 0

    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            sink.sendall(chunk)
            digest.update(chunk)
            sent += len(chunk)

    value = digest.digest()
    sink.sendall(value)
    return value, sent


#### Reply helpers ####
def send_error(session, record):
    """Write a single error record as the whole reply."""
    session.conn.sendall(protocol.encode_error(record))
    session.outcome = OUTCOME_ERROR


class _SessionSink:
    """Writes to the session socket and counts bytes for metrics."""
    def __init__(self, session):
        self.session = session
        self.written = 0

    def sendall(self, data):
        self.session.conn.sendall(data)
        self.written += len(data)
        self.session.bytes_sent += len(data)


def _send_names(session, names):
    # Names go out as their on-disk bytes; undecodable names keep their surrogate escapes.
    for name in names:
        data = os.fsencode(name) + b"\n"
        session.conn.sendall(data)
        session.bytes_sent += len(data)


#### Operation handlers ####
def handle_list(session, request, perf):
    """
    LIST: send every served MP3 filename, one per line.

    Reply:
        <filename>\\n ...   or   FILEERROR <errno>
    """
    timer = timed()
    try:
        names = list_files(session.served_dir)
    except OSError as exc:
        send_error(session, protocol.file_error(exc))
        print(f"[LIST] failed: cannot read '{session.served_dir}': {exc}")
    else:
        _send_names(session, names)
        print(f"[LIST] sent {len(names)} name(s) to {session.addr}")
    finally:
        perf.record("LIST", timer(), session.bytes_sent, session.outcome)


def handle_search(session, request, perf):
    """SEARCH <term>: send served MP3 filenames containing term."""
    timer = timed()
    term = request.argument
    try:
        names = search_files(session.served_dir, term)
    except OSError as exc:
        send_error(session, protocol.file_error(exc))
        print(f"[SEARCH] failed: cannot read '{session.served_dir}': {exc}")
    else:
        _send_names(session, names)
        print(f"[SEARCH] '{term}' matched {len(names)} name(s) for {session.addr}")
    finally:
        perf.record("SEARCH", timer(), session.bytes_sent, session.outcome, meta={"term": term})


def handle_download(session, request, perf):
    """
    DOWNLOAD <filename>: stream the file and its digest.

    Reply:
        <raw file bytes><32-byte SHA-256>   or   FILEERROR <errno>

    A failure after streaming has begun cannot be reported in-band; the
    session is dropped and the client sees a short or mismatched stream.
    """
    timer = timed()
    name = request.argument
    sink = _SessionSink(session)
    try:
        target_path = resolve_path(session.served_dir, name)
        print(f"[DOWNLOAD] Sending '{name}' to {session.addr} ...")
        digest, sent = send_file(target_path, sink)
    except OSError as exc:
        if sink.written:
            session.outcome = OUTCOME_ERROR
            print(f"[DOWNLOAD] aborted after {sink.written} bytes of '{name}': {exc}")
            raise
        send_error(session, protocol.file_error(exc))
        print(f"[DOWNLOAD] failed: '{name}': {exc}")
    else:
        print(f"[DOWNLOAD] Success: {sent} bytes + digest {digest.hex()[:16]}... for '{name}'")
    finally:
        perf.record("DOWNLOAD", timer(), session.bytes_sent, session.outcome, meta={"filename": name})
