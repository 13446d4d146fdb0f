# common/channel.py
# TLS contexts and session helpers for the secure byte stream.

import socket       # TCP connections
import ssl          # TLS record layer and handshake

#### Constants ####
# Deadline in seconds for every read/write on a session socket (None = block forever).
SESSION_TIMEOUT = 30.0

# Size of each read while draining a reply stream.
RECV_SIZE = 4096


#### Contexts ####
def create_server_context(cert_file, key_file):
    """
    Build the server-side TLS context from a PEM certificate and key.

    Raises:
        OSError / ssl.SSLError: If the files are missing or do not match.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    return context


def create_client_context(ca_file=None):
    """
    Build the client-side TLS context.

    Parameters:
        ca_file (str|None): PEM file of the server certificate (or its CA).
            When given, the server certificate and host name are verified.
            When omitted the channel is encrypted but the peer is not
            authenticated, which is how self-signed deployments are reached.
    """
    if ca_file:
        return ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=ca_file)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


#### Sessions ####
def open_session(host, port, context, timeout=SESSION_TIMEOUT):
    """
    Open a TCP connection and run the TLS handshake over it.

    Returns:
        ssl.SSLSocket: Connected secure socket (usable as a context manager).

    Raises:
        OSError: On resolution, connection, or handshake failure.
    """
    sock = socket.create_connection((host, port), timeout=timeout)
    try:
        return context.wrap_socket(sock, server_hostname=host)
    except OSError:
        sock.close()
        raise


def accept_session(conn, context, timeout=SESSION_TIMEOUT):
    """
    Run the server side of the TLS handshake on an accepted socket.

    The raw socket is closed if the handshake fails.
    """
    conn.settimeout(timeout)
    try:
        return context.wrap_socket(conn, server_side=True)
    except OSError:
        conn.close()
        raise


def iter_chunks(conn, size=RECV_SIZE):
    """Yield reply chunks in arrival order until the peer closes the channel."""
    while True:
        chunk = conn.recv(size)
        if not chunk:
            return
        yield chunk
