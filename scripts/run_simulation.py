"""Run the enforcement simulation on a topology file, optionally with the remote mirror."""
import argparse
import asyncio
from pathlib import Path

from speedwatch.communicator import EnforcementCommunicator
from speedwatch.config import Config
from speedwatch.enforcement import CongestionMonitor, EnforcementMirror
from speedwatch.traffic.controller import TrafficController

SAMPLE_MAP = Path(__file__).resolve().parents[1] / 'speedwatch' / 'data' / 'sample_topology.json'


def parse_args():
    parser = argparse.ArgumentParser(description='Average-speed enforcement simulation')
    parser.add_argument('--config', default=None, help='user config file merged over the defaults')
    parser.add_argument('--map', default=str(SAMPLE_MAP), help='topology JSON file')
    parser.add_argument('--ticks', type=int, default=2000)
    parser.add_argument('--test-plan', type=int, default=0, help='number of vehicles to grade (0 = off)')
    parser.add_argument('--mirror', action='store_true', help='forward crossings to an in-process mirror')
    parser.add_argument('--realtime', action='store_true')
    return parser.parse_args()


async def main():
    args = parse_args()
    config = Config(args.config)
    controller = TrafficController(config, map=args.map)
    controller.init_violation_log()

    monitor = None
    if args.mirror:
        mirror = EnforcementMirror(config, clock=lambda: controller.clock)
        communicator = EnforcementCommunicator(mirror, controller.network)
        await communicator.sync_topology()
        controller.init_communicator(communicator)
        monitor = CongestionMonitor(mirror, config, clock=lambda: controller.clock)
        monitor.add_listener(lambda data: controller.logger.info(f'Congestion: {data}'))
        monitor.start()

    if args.test_plan:
        controller.spawn_manager.start_test_plan(args.test_plan)

    try:
        await controller.simulation(max_ticks=args.ticks, realtime=args.realtime)
    finally:
        if monitor is not None:
            await monitor.stop()


if __name__ == '__main__':
    asyncio.run(main())
