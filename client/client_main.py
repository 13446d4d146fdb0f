# client/client_main.py
# Runs the interactive client: list, search, download, and play MP3s from a server.

import os           # local download paths and metrics file
import socket       # host resolution errors
import sys          # exit codes and argv
from client.commands import MediaClient                       # request pipeline
from client.playback import PlaybackController, NotPlaying    # background playback
from common import channel
from common import protocol
from common.protocol import ServerError

#### Constants ####
USAGE = (
    "Commands:\n"
    "  list                 List MP3 files on the server\n"
    "  search <term>        List MP3 files whose name contains <term>\n"
    "  download <file>      Download and verify a file\n"
    "  play <file>          Play a downloaded file\n"
    "  stop                 Stop playback\n"
    "  help                 Show this help\n"
    "  quit / exit          Stop playback and exit\n"
)

CLI_USAGE = "Usage: client <server name>[:<port>] [<CA certificate file>]"

METRICS_FILE = os.path.join(os.path.dirname(__file__), "client_metrics.csv")

# Trusted server certificate (or its CA), used when no file is given on the command line.
DEFAULT_CA_FILE = os.path.join(os.path.dirname(__file__), "ca.pem")


#### Startup ####
def _parse_target(argv):
    """
    Return (host, port, ca_file) from argv; ca_file is None when omitted.

    Raises:
        ValueError: With a usage message when the target is missing or invalid.
    """
    if len(argv) not in (1, 2):
        raise ValueError(CLI_USAGE)
    host, port = protocol.parse_target(argv[0])
    ca_file = argv[1] if len(argv) == 2 else None
    return host, port, ca_file


def _select_ca_file(ca_file=None):
    """
    Pick the certificate file used to authenticate the server.

    An explicit file must exist. Without one, DEFAULT_CA_FILE is used
    when present; otherwise None (encrypted but unauthenticated).

    Raises:
        ValueError: If an explicit file does not exist.
    """
    if ca_file:
        if not os.path.isfile(ca_file):
            raise ValueError(f"CA certificate file not found: {ca_file}")
        return ca_file
    if os.path.isfile(DEFAULT_CA_FILE):
        return DEFAULT_CA_FILE
    return None


def _check_resolvable(host, port):
    """Resolve the server once so a bad host is reported at startup."""
    socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)


#### Command handlers ####
def _print_names(names, empty_message):
    if not names:
        print(empty_message)
        return
    for name in names:
        print(f"  {name}")


def _handle_list(client):
    _print_names(client.list_files(), "[i] No MP3 files available.")


def _handle_search(client, term):
    _print_names(client.search(term), f"[i] No MP3 files match '{term}'.")


def _handle_play(client, player, name):
    """
    Play a downloaded file, stopping the current track first.
    """
    path = os.path.join(client.download_dir, os.path.basename(name))
    if not os.path.isfile(path):
        print(f"[x] '{name}' has not been downloaded. Use: download {name}")
        return

    if player.is_playing:
        try:
            player.stop()
        except NotPlaying:
            # Track ended on its own in the meantime.
            pass

    if not player.start(path):
        print("[x] Playback is busy; try 'stop' first.")


def _handle_stop(player):
    try:
        player.stop()
    except NotPlaying:
        print("[i] Nothing is playing.")


def _dispatch(client, player, line):
    """
    Parse one input line and run the command.

    Returns:
        bool: False to leave the command loop; True to continue.
    """
    if not line:
        return True

    cmd, _, arg = line.partition(" ")
    cmd = cmd.lower()
    arg = arg.strip()

    if cmd in ("quit", "exit"):
        return False

    if cmd == "help":
        print(USAGE)
        return True

    if cmd == "list":
        _handle_list(client)
        return True

    if cmd == "search":
        if arg:
            _handle_search(client, arg)
        else:
            print("Use: search <term>")
        return True

    if cmd == "download":
        if arg:
            client.download(arg)
        else:
            print("Use: download <file>")
        return True

    if cmd == "play":
        if arg:
            _handle_play(client, player, arg)
        else:
            print("Use: play <file>")
        return True

    if cmd == "stop":
        _handle_stop(player)
        return True

    print("Unknown or malformed command. Type 'help'.")
    return True


#### Main Entry Point ####
def main(argv=None, ca_file=None):
    """
    Launch the client and drive the command loop.

    The server is authenticated against ca_file (argv, then parameter,
    then DEFAULT_CA_FILE when present).

    Returns:
        int: 0 on normal exit, 1 if the server cannot be resolved or the
             CA file cannot be loaded, 2 on a usage error.
    """
    if argv is None:
        argv = sys.argv[1:]

    try:
        host, port, argv_ca_file = _parse_target(argv)
        ca_file = _select_ca_file(argv_ca_file or ca_file)
    except ValueError as exc:
        print(f"[x] {exc}")
        return 2

    try:
        _check_resolvable(host, port)
    except socket.gaierror as exc:
        print(f"[x] Cannot resolve hostname {host}: {exc}")
        return 1

    try:
        context = channel.create_client_context(ca_file)
    except OSError as exc:
        print(f"[x] Unable to load CA certificate '{ca_file}': {exc}")
        return 1

    if ca_file:
        print(f"[i] Verifying server certificate against {ca_file}")
    else:
        print("[!] No CA certificate given: traffic is encrypted but the server is NOT authenticated.")

    client = MediaClient(host, port, context=context)
    player = PlaybackController()
    print(f"[i] Using server {host}:{port}. Type 'help' for commands.\n")

    try:
        while True:
            try:
                line = input("mp3> ").strip()
            except EOFError:
                line = "quit"
            except KeyboardInterrupt:
                print("\n[i] Interrupted.")
                line = "quit"

            try:
                keep_running = _dispatch(client, player, line)
            except ServerError as exc:
                print(f"[x] {exc}")
                keep_running = True
            except OSError as exc:
                # One failed request never ends the client.
                print(f"[x] Network error: {exc}")
                keep_running = True

            if not keep_running:
                break

    finally:
        if player.is_playing:
            _handle_stop(player)
        try:
            client.perf.to_csv(METRICS_FILE)
            print(f"[i] Wrote client performance metrics to {METRICS_FILE}")
        except OSError as exc:
            print(f"[x] Failed to write client performance metrics: {exc}")

    return 0


#### Run as Script ####
if __name__ == "__main__":
    sys.exit(main())
