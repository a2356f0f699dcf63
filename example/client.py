#!/usr/bin/env python3

import datetime

from timerpc.client import connect


def main():
    with connect(host='127.0.0.1', port=1234) as client:
        proxy = client.get_proxy()
        timestamp = proxy.TimeServer.GiveServerTime()
        print('Server time: %s (%s)'
              % (timestamp, datetime.datetime.fromtimestamp(timestamp)))


if __name__ == '__main__':
    try:
        main()
    except KeyboardInterrupt:
        pass
