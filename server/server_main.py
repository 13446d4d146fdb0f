# server/server_main.py
# Starts the multithreaded TLS server and answers one request per connection.

import os                           # certificate and metrics paths
import socket                       # TCP listening socket
import sys                          # process exit codes
import threading                    # per-connection threads
from analysis.performance_eval import PerfRecorder, timed, OUTCOME_OK, OUTCOME_ERROR
from common import channel          # TLS contexts and handshakes
from common import protocol         # request decoding and error records
from common.protocol import Operation, RpcError
from server import file_ops         # LIST / SEARCH / DOWNLOAD handlers

#### Constants ####
BACKLOG = 5                         # Max queued connections
ACCEPT_POLL = 1.0                   # Accept timeout so shutdown is noticed
BASE_DIR = os.path.dirname(__file__)

CERT_FILE = os.path.join(BASE_DIR, "cert.pem")
KEY_FILE = os.path.join(BASE_DIR, "key.pem")
METRICS_FILE = os.path.join(BASE_DIR, "server_metrics.csv")

USAGE = "Usage: server [port]   (default 8080, range 1-65535)"

# Operation -> handler(session, request, perf)
OPERATION_HANDLERS = {
    Operation.LIST: file_ops.handle_list,
    Operation.SEARCH: file_ops.handle_search,
    Operation.DOWNLOAD: file_ops.handle_download,
}


#### Per-connection session state ####
class ClientSession:
    """
    State for one accepted connection and its single request.

    Tracks:
      - conn / addr: TLS socket and peer address
      - served_dir: directory the request is answered from
      - bytes_sent: reply payload bytes written so far
      - outcome: 'ok' until an error record is sent or the transfer breaks
    """
    def __init__(self, conn, addr, served_dir):
        self.conn = conn
        self.addr = addr
        self.served_dir = served_dir
        self.bytes_sent = 0
        self.outcome = OUTCOME_OK


#### Session handler ####
def handle_client(raw_conn, addr, context, served_dir, perf, timeout=channel.SESSION_TIMEOUT):
    """
    Serve exactly one request on an accepted connection, then close it.

    Steps:
      1. TLS handshake (failure ends the session without a reply).
      2. One read of up to BUFFER_SIZE bytes is the whole request.
      3. Decode; an RpcError is answered with "RPCERROR <code>".
      4. Dispatch to the LIST / SEARCH / DOWNLOAD handler.
      5. Close the TLS session and socket on every path.
    """
    print(f"[+] New connection from {addr}")
    session_timer = timed()
    conn = None
    outcome = OUTCOME_ERROR
    operation = "session"

    try:
        try:
            conn = channel.accept_session(raw_conn, context, timeout)
        except OSError as exc:
            print(f"[x] TLS handshake with {addr} failed: {exc}")
            return

        session = ClientSession(conn, addr, served_dir)

        data = conn.recv(protocol.BUFFER_SIZE)
        if not data:
            print(f"[session] {addr} closed before sending a request.")
            return

        try:
            request = protocol.decode(data)
        except RpcError as exc:
            file_ops.send_error(session, exc.record)
            print(f"[session] {addr}: rejected request: {exc}")
            return

        operation = request.operation.value
        OPERATION_HANDLERS[request.operation](session, request, perf)
        outcome = session.outcome

    except socket.timeout:
        print(f"[x] Session with {addr} timed out.")

    except ConnectionResetError:
        print(f"[x] Connection reset by {addr}")

    except OSError as exc:
        print(f"[x] Error with {addr}: {exc}")

    except Exception as exc:
        # Generic safety net around the per-client thread.
        print(f"[x] Unexpected error with {addr}: {exc!r}")

    finally:
        if conn is not None:
            conn.close()
        else:
            raw_conn.close()

        elapsed = session_timer()
        perf.record("session", elapsed, outcome=outcome, meta={"peer": addr[0], "operation": operation})
        print(f"[-] Disconnected from {addr} (Session duration: {elapsed:.2f}s)")


#### Connection dispatcher ####
def create_listener(port, host=""):
    """
    Bind and listen on (host, port).

    Raises:
        OSError: If the socket cannot be bound; fatal at startup.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(BACKLOG)
    except OSError:
        sock.close()
        raise
    return sock


def serve(listener, context, served_dir, perf, stop_event=None, timeout=channel.SESSION_TIMEOUT):
    """
    Accept connections until stop_event is set or the listener is closed.

    Each connection is handed to handle_client() on its own daemon thread;
    the loop never waits for a handler. Accept failures are logged and the
    loop continues.
    """
    if stop_event is None:
        stop_event = threading.Event()
    listener.settimeout(ACCEPT_POLL)

    while not stop_event.is_set():
        try:
            conn, addr = listener.accept()
        except socket.timeout:
            continue
        except OSError as exc:
            if stop_event.is_set() or listener.fileno() == -1:
                break
            print(f"[x] Unable to accept connection: {exc}")
            continue

        thread = threading.Thread(
            target=handle_client,
            args=(conn, addr, context, served_dir, perf, timeout),
            daemon=True,
        )
        thread.start()


def _console_shutdown_loop(stop_event):
    """
    Background console loop: 'q' + Enter stops the server.

    Returns quietly when stdin is closed (e.g. running in a container).
    """
    while not stop_event.is_set():
        try:
            cmd = input().strip().lower()
        except EOFError:
            return

        if cmd == "q":
            print("[i] Shutdown requested. Stopping server...")
            stop_event.set()
            return


def _parse_args(argv):
    """Return the port from argv, or raise ValueError with a usage message."""
    if len(argv) > 1:
        raise ValueError(f"Too many arguments.\n{USAGE}")
    if not argv:
        return protocol.DEFAULT_PORT
    return protocol.parse_port(argv[0])


#### Main entry point ####
def main(argv=None, served_dir=None, cert_file=CERT_FILE, key_file=KEY_FILE):
    """
    Run the server until 'q', Ctrl+C, or a fatal startup error.

    Returns:
        int: 0 after a clean shutdown, 1 if the server could not start,
             2 on a usage error.
    """
    if argv is None:
        argv = sys.argv[1:]

    try:
        port = _parse_args(argv)
    except ValueError as exc:
        print(f"[x] {exc}")
        return 2

    served_dir = file_ops.init_served_dir(served_dir or file_ops.SERVED_DIR)

    try:
        context = channel.create_server_context(cert_file, key_file)
    except OSError as exc:
        print(f"[x] Unable to load certificate '{cert_file}' / key '{key_file}': {exc}")
        return 1

    try:
        listener = create_listener(port)
    except OSError as exc:
        print(f"[x] Unable to bind to port {port}: {exc}")
        return 1

    perf = PerfRecorder(source="server")
    print(
        f"[✓] Server is running on port {port}\n"
        f"[i] Serving MP3 files from {served_dir}\n"
        "Type 'q' and press Enter to stop the server.\n"
    )

    start_timer = timed()
    shutdown_event = threading.Event()
    console_thread = threading.Thread(
        target=_console_shutdown_loop,
        args=(shutdown_event,),
        daemon=True,
    )
    console_thread.start()

    try:
        serve(listener, context, served_dir, perf, shutdown_event)
    except KeyboardInterrupt:
        print("\n[i] Server interrupted via Ctrl+C. Stopping...")
    finally:
        shutdown_event.set()
        listener.close()

        uptime = start_timer()
        perf.record("server_uptime", uptime)
        print(f"[i] Server stopped. Total runtime: {uptime:.2f}s")

        try:
            perf.to_csv(METRICS_FILE)
            print(f"[i] Wrote performance metrics to {METRICS_FILE}\n")
        except OSError as exc:
            print(f"[x] Failed to write performance metrics: {exc}\n")

    return 0


#### Run as script ####
if __name__ == "__main__":
    sys.exit(main())
