#!/usr/bin/env python3

import logging

from timerpc.server import Server
from timerpc.timeserver import build_registry


def main():
    logging.basicConfig(level=logging.INFO)
    with Server(build_registry(), host='0.0.0.0', port=1234) as server:
        server.run()


if __name__ == '__main__':
    try:
        main()
    except KeyboardInterrupt:
        pass
