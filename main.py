# main.py
# Entry launcher for the Secure MP3 Share system.
# Starts the server or the client from the command line or an interactive menu.

import sys          # process exit handling
from server import certs, file_ops      # certificate bootstrap and served directory

#### Menu Display ####
MENU = (
    "\n"
    "=== Secure MP3 Share ===\n"
    "Select mode to run:\n"
    "  1. Server\n"
    "  2. Client\n"
    "  3. Quit\n"
    "========================\n"
)

CLI_USAGE = (
    "Usage:\n"
    "  main.py                           Interactive menu\n"
    "  main.py server [port]             Run the server\n"
    "  main.py client host[:port] [ca]   Run the client (ca: server certificate to trust)\n"
)


def _prompt_yes_no(prompt, default=False):
    """
    Ask the user a yes/no question and return their answer.

    Parameters:
        prompt (str): Text to display (e.g., "Generate? [y/N]: ").
        default (bool): Value to return if the user presses Enter.
    """
    while True:
        raw = input(prompt).strip().lower()
        if not raw:
            return default
        if raw in ("y", "yes"):
            return True
        if raw in ("n", "no"):
            return False
        print("Please enter 'y' or 'n'.")


#### Server bootstrap ####
def _bootstrap_server(interactive=True):
    """
    Make sure the server has a TLS certificate and a served directory.

    A missing certificate/key pair can be replaced with a freshly
    generated self-signed one (development setups only).

    Returns:
        bool: True if the server can start.
    """
    from server.server_main import CERT_FILE, KEY_FILE

    served_dir = file_ops.init_served_dir()
    print(f"[SETUP] Serving MP3 files from {served_dir}")

    if certs.cert_files_exist(CERT_FILE, KEY_FILE):
        return True

    print("\n[SETUP] No TLS certificate found.")
    print(f"        Expected {CERT_FILE} and {KEY_FILE}.")
    if not interactive:
        print("[x] Provide the certificate and key, or start through the menu to generate them.")
        return False

    if not _prompt_yes_no("Generate a self-signed certificate now? [y/N]: ", default=False):
        return False

    try:
        certs.generate_self_signed_cert(CERT_FILE, KEY_FILE)
    except OSError as exc:
        print(f"[x] Could not write certificate: {exc}")
        return False
    print(f"[i] Clients authenticate this server by trusting {CERT_FILE}")
    print("    (copy it to client/ca.pem or pass it as: client host[:port] <file>).")
    return True


def _run_server(args, interactive=True):
    if not _bootstrap_server(interactive):
        return 1
    from server.server_main import main as server_main
    print("\n[INFO] Starting server...\n")
    return server_main(args)


def _run_client(args):
    from client.client_main import main as client_main
    print("\n[INFO] Starting client...\n")
    return client_main(args)


#### Main Launcher ####
def _menu():
    """
    Present the Server / Client / Quit menu until the user quits.
    """
    while True:
        try:
            print(MENU, end="")
            choice = input("\nEnter choice (1-3): ").strip()

            if choice == "1":
                port = input("Server port [8080]: ").strip()
                _run_server([port] if port else [])

            elif choice == "2":
                target = input("Server host[:port]: ").strip()
                ca_file = input("CA certificate file [client/ca.pem if present]: ").strip()
                _run_client([target, ca_file] if ca_file else [target])

            elif choice == "3":
                print("Exiting program.")
                return 0

            else:
                print("Invalid choice. Please enter 1, 2, or 3.\n")

        except (KeyboardInterrupt, EOFError):
            print("\n[i] Launcher interrupted. Exiting program.\n")
            return 0


def main(argv=None):
    """
    Dispatch to the server, the client, or the interactive menu.

    Returns:
        int: Process exit code.
    """
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        return _menu()

    mode, rest = argv[0].lower(), argv[1:]
    if mode == "server":
        return _run_server(rest, interactive=sys.stdin.isatty())
    if mode == "client":
        return _run_client(rest)

    print(CLI_USAGE)
    return 2


#### Run as Script ####
if __name__ == "__main__":
    sys.exit(main())
