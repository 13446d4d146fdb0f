# client/commands.py
# Sends LIST / SEARCH / DOWNLOAD requests, one fresh TLS session per request.

import contextlib   # deterministic close of reply streams
import hashlib      # digest of downloaded content
import os           # local download paths
from collections import namedtuple
from analysis.performance_eval import PerfRecorder, timed, OUTCOME_OK, OUTCOME_ERROR
from common import channel          # TLS sessions
from common import protocol         # request encoding and error records
from common.protocol import ENC, DIGEST_SIZE, Operation, Request, ServerError

#### Constants ####
MAX_RETRIES = 3             # Download attempts per download() call
PART_SUFFIX = ".part"       # Suffix while a download is unverified

BASE_DIR = os.path.dirname(__file__)

# All downloads are stored under client/downloads/
CLIENT_DOWNLOADS_DIR = os.path.join(BASE_DIR, "downloads")


class IntegrityError(Exception):
    """The received content does not match the trailing digest."""


# Outcome of MediaClient.download()
DownloadResult = namedtuple(
    "DownloadResult",
    ["ok", "filename", "path", "attempts", "digest", "error"],
)


#### Client ####
class MediaClient:
    """
    Request pipeline for one server.

    Every call opens its own TLS session; nothing is reused between
    requests or between download attempts.

    Tracks:
      - host / port: server address
      - context: client TLS context
      - download_dir: where verified downloads are written
      - max_retries: attempts per download
      - perf: client-side performance recorder
    """

    def __init__(self, host, port=protocol.DEFAULT_PORT, context=None,
                 download_dir=CLIENT_DOWNLOADS_DIR, max_retries=MAX_RETRIES,
                 timeout=channel.SESSION_TIMEOUT):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.host = host
        self.port = port
        self.context = context or channel.create_client_context()
        self.download_dir = download_dir
        self.max_retries = max_retries
        self.timeout = timeout
        self.perf = PerfRecorder(source="client")

    #### Basic Helpers ####
    def _open_session(self):
        return channel.open_session(self.host, self.port, self.context, self.timeout)

    def _exchange(self, request):
        """
        Send one request on a fresh session and yield the reply chunks.

        The session is closed when the reply ends or the generator is
        closed; callers wrap it in contextlib.closing().
        """
        payload = protocol.encode(request)
        with self._open_session() as conn:
            conn.sendall(payload)
            print(f"[client >>] {payload.decode(ENC)}")
            yield from channel.iter_chunks(conn)

    def _fetch_names(self, request):
        """Run a LIST/SEARCH exchange and split the reply into filenames."""
        buf = bytearray()
        with contextlib.closing(self._exchange(request)) as replies:
            for index, chunk in enumerate(replies):
                if index == 0:
                    record = protocol.decode_error(chunk)
                    if record is not None:
                        raise ServerError(record)
                buf.extend(chunk)

        return [line.decode(ENC, errors="replace") for line in bytes(buf).split(b"\n") if line]

    def _timed_names(self, request):
        timer = timed()
        outcome = OUTCOME_ERROR
        try:
            names = self._fetch_names(request)
            outcome = OUTCOME_OK
            return names
        finally:
            self.perf.record(request.operation.value, timer(), outcome=outcome)

    #### LIST / SEARCH ####
    def list_files(self):
        """
        Ask the server for every MP3 it serves.

        Returns:
            list[str]: Filenames in the order the server sent them.

        Raises:
            ServerError: If the server replied with an error record.
            OSError: On connection, handshake, or transfer failure.
        """
        return self._timed_names(Request(Operation.LIST))

    def search(self, term):
        """Ask for MP3 filenames containing term (case-sensitive)."""
        return self._timed_names(Request(Operation.SEARCH, term))

    #### DOWNLOAD ####
    def _resolve_download_target(self, remote_name, local_override=None):
        """
        Decide where to store a downloaded file locally.

        Only the basename is kept, so a download never escapes download_dir.
        """
        filename = os.path.basename(local_override or remote_name)
        if not filename:
            filename = "downloaded_file.mp3"
        return os.path.join(self.download_dir, filename)

    def _download_once(self, filename, target):
        """
        One download attempt on a fresh session.

        Content is streamed to "<target>.part" while the last DIGEST_SIZE
        bytes of the stream are held back. At end of stream the held-back
        block must equal the SHA-256 of everything before it; only then is
        the part file renamed to target.

        Returns:
            tuple[bytes, int]: (digest, content size)

        Raises:
            ServerError: Error record as the first reply chunk.
            IntegrityError: Stream too short or digest mismatch.
            OSError: Transport failure or local file error.
        """
        part_path = target + PART_SUFFIX
        hasher = hashlib.sha256()
        tail = bytearray()
        received = 0
        out = None
        committed = False

        try:
            with contextlib.closing(self._exchange(Request(Operation.DOWNLOAD, filename))) as replies:
                for index, chunk in enumerate(replies):
                    if index == 0:
                        record = protocol.decode_error(chunk)
                        if record is not None:
                            raise ServerError(record)

                    received += len(chunk)
                    tail.extend(chunk)
                    if len(tail) > DIGEST_SIZE:
                        content = bytes(tail[:-DIGEST_SIZE])
                        del tail[:-DIGEST_SIZE]
                        if out is None:
                            os.makedirs(self.download_dir, exist_ok=True)
                            out = open(part_path, "wb")
                        out.write(content)
                        hasher.update(content)

            if received < DIGEST_SIZE:
                raise IntegrityError(f"Reply of {received} bytes is too short to carry a digest")

            if out is None:
                # Empty file: the reply was the digest alone.
                os.makedirs(self.download_dir, exist_ok=True)
                out = open(part_path, "wb")
            out.close()

            expected = bytes(tail)
            actual = hasher.digest()
            if actual != expected:
                raise IntegrityError(
                    f"Digest mismatch: server {expected.hex()[:16]}..., received {actual.hex()[:16]}..."
                )

            os.replace(part_path, target)
            committed = True
            return actual, received - DIGEST_SIZE

        finally:
            if out is not None and not out.closed:
                out.close()
            if not committed and os.path.exists(part_path):
                os.remove(part_path)

    def download(self, filename, local_name=None):
        """
        Download a file with bounded retry and digest verification.

        Up to max_retries attempts are made, each on a new session. RPC
        errors end the loop at once; file errors, transport errors, local
        I/O errors and digest mismatches are retried.

        Returns:
            DownloadResult: ok, filename, path (None on failure), attempts,
                            digest (bytes or None), error (last exception or None).
        """
        target = self._resolve_download_target(filename, local_name)
        timer = timed()
        attempts = 0
        last_error = None

        while attempts < self.max_retries:
            attempts += 1
            print(f"[DOWNLOAD] Attempt {attempts}/{self.max_retries}: '{filename}'")
            try:
                digest, size = self._download_once(filename, target)
            except ServerError as exc:
                last_error = exc
                print(f"[x] {exc}")
                if exc.permanent:
                    print("[x] Request rejected by server; not retrying.")
                    break
            except IntegrityError as exc:
                last_error = exc
                print(f"[x] Integrity check failed: {exc}")
            except OSError as exc:
                last_error = exc
                print(f"[x] Attempt {attempts} failed: {exc}")
            else:
                self.perf.record(
                    "DOWNLOAD", timer(), size, OUTCOME_OK,
                    meta={"filename": filename, "attempts": attempts},
                )
                print(f"[✓] Downloaded '{filename}' ({size} bytes) -> {target}")
                print(f"[✓] SHA-256 verified: {digest.hex()}")
                return DownloadResult(True, filename, target, attempts, digest, None)

        self.perf.record(
            "DOWNLOAD", timer(), 0, OUTCOME_ERROR,
            meta={"filename": filename, "attempts": attempts, "error": str(last_error)},
        )
        print(f"[x] Download of '{filename}' failed after {attempts} attempt(s).")
        return DownloadResult(False, filename, None, attempts, None, last_error)
