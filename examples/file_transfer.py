#!/usr/bin/env python3
"""
utcp File Transfer Example

Sends a file across a UDP socket using the utcp sender, and receives it on
the other side with the simulator's receiver logic. Shows:
- Three-way handshake before any data flows
- Segmentation of the file into MSS-sized segments
- A fixed sliding window of segments in flight
- Retransmission on timeout and on triple duplicate ACKs
- Teardown, then the transfer statistics

Usage:
    python examples/file_transfer.py receive -p 9000 -o copy.bin
    python examples/file_transfer.py send -p 9001 -s 127.0.0.1 -a 9000 -f data.bin -m 1000 -c 8
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utcp import TCPSender, SenderConfig, UTCPError
from simulator import UdpReceiver
import logging
import hashlib
import time

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def send_file(local_port: int, host: str, port: int, filepath: str,
              mss: int, sws: int, timeout: float) -> int:
    """Send a file to a receiver; returns a process exit code."""
    if not os.path.isfile(filepath):
        print(f"Error: File not found: {filepath}")
        return 1

    config = SenderConfig(mss=mss, sws=sws,
                          control_timeout=timeout, data_timeout=timeout)
    sender = TCPSender(local_port, host, port, file_path=filepath, config=config)

    print(f"Sending file: {filepath} ({os.path.getsize(filepath)} bytes)")
    start_time = time.time()

    with sender:
        try:
            stats = sender.transfer()
        except UTCPError as e:
            print(f"Transfer failed: {e}")
            print(sender.stats)
            return 1

    elapsed = max(time.time() - start_time, 1e-6)
    print(stats)
    print(f"Time: {elapsed:.2f}s, Throughput: {stats.bytes_sent / elapsed / 1024:.1f} KB/s")
    return 0


def receive_file(port: int, output: str, idle_timeout: float) -> int:
    """Receive one file; returns a process exit code."""
    receiver = UdpReceiver(port=port, host="0.0.0.0", idle_timeout=idle_timeout)
    print(f"Listening on port {receiver.address[1]}")

    try:
        content = receiver.serve()
    except TimeoutError as e:
        print(f"Receive failed: {e}")
        return 1
    finally:
        receiver.close()

    with open(output, 'wb') as f:
        f.write(content)

    print(f"File saved to: {output} ({len(content)} bytes)")
    print(f"MD5: {hashlib.md5(content).hexdigest()}")
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="utcp File Transfer")
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Send command
    send_parser = subparsers.add_parser('send', help='Send a file')
    send_parser.add_argument('-p', '--port', type=int, default=9001, help='Local port')
    send_parser.add_argument('-s', '--remote-ip', default='127.0.0.1', help='Receiver address')
    send_parser.add_argument('-a', '--remote-port', type=int, default=9000, help='Receiver port')
    send_parser.add_argument('-f', '--file', required=True, help='File to send')
    send_parser.add_argument('-m', '--mss', type=int, default=1000, help='Maximum segment payload')
    send_parser.add_argument('-c', '--sws', type=int, default=8, help='Window size in segments')
    send_parser.add_argument('--timeout', type=float, default=5.0, help='Receive timeout (s)')

    # Receive command
    recv_parser = subparsers.add_parser('receive', help='Receive a file')
    recv_parser.add_argument('-p', '--port', type=int, default=9000, help='Port to listen on')
    recv_parser.add_argument('-o', '--output', required=True, help='Output file')
    recv_parser.add_argument('--idle-timeout', type=float, default=30.0,
                             help='Give up after this long without a segment (s)')

    args = parser.parse_args()

    if args.command == 'send':
        sys.exit(send_file(args.port, args.remote_ip, args.remote_port, args.file,
                           args.mss, args.sws, args.timeout))
    elif args.command == 'receive':
        sys.exit(receive_file(args.port, args.output, args.idle_timeout))
    else:
        parser.print_help()
