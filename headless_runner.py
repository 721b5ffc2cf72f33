"""Headless runner for quick smoke tests and CI.

Starts a calculator server plus a few client processes that keep issuing
random requests against it, collects every process's logs into a
timestamped file and prints round-trip statistics.
"""
import argparse
import logging
import multiprocessing as mp
import os
import queue
import random
import time

from diagnostics import Diagnostics
from dispatch_server import run_server
from ipc_engine import Operation
from protocol_config import ProtocolConfig
from protocol_errors import ProtocolError
from request_client import call
from worker import configure_process_logging

logger = logging.getLogger(__name__)


def client_loop(server_pid, config, control_q, result_q, log_q, log_level=logging.INFO):
    """Issue random requests one after another until told to STOP."""
    configure_process_logging(log_q, log_level)
    pid = os.getpid()
    logger.info("[P%d] Started.", pid)
    while True:
        try:
            if control_q.get_nowait() == "STOP":
                logger.info("[P%d] Stopping.", pid)
                break
        except queue.Empty:
            pass

        op = random.choice(list(Operation))
        a = random.randint(-1000, 1000)
        b = random.randint(1, 100) * random.choice((-1, 1))
        start = time.time()
        try:
            result = call(server_pid, a, op, b, config)
        except ProtocolError as e:
            logger.warning("[P%d] %d %s %d failed: %s", pid, a, op.name, b, e)
            result_q.put(("fail", pid, e.kind))
            continue
        latency = time.time() - start
        logger.info("[P%d] %d %s %d = %d, latency=%.4fs", pid, a, op.name, b, result, latency)
        result_q.put(("ok", pid, latency))


def _format(record: logging.LogRecord) -> str:
    return f"{record.created:.3f} {record.levelname} {record.getMessage()}"


def run_headless(num_clients: int, seconds: int, config: ProtocolConfig):
    log_q = mp.Queue()
    result_q = mp.Queue()
    control_queues = [mp.Queue() for _ in range(num_clients)]
    diagnostics = Diagnostics()

    ready = mp.Event()
    # Not daemonic: the server spawns worker processes of its own.
    server = mp.Process(target=run_server, args=(config, ready, log_q))
    server.start()
    if not ready.wait(timeout=10):
        server.terminate()
        raise RuntimeError("Server did not become ready in time")

    procs = []
    for i in range(num_clients):
        p = mp.Process(
            target=client_loop,
            args=(server.pid, config, control_queues[i], result_q, log_q),
            daemon=True,
        )
        procs.append(p)
        p.start()

    start = time.time()
    timeline = []

    def drain():
        while True:
            try:
                timeline.append(_format(log_q.get_nowait()))
            except queue.Empty:
                break
        while True:
            try:
                outcome, pid, value = result_q.get_nowait()
            except queue.Empty:
                break
            if outcome == "ok":
                diagnostics.record_success(pid, value)
            else:
                diagnostics.record_failure(pid, value)

    try:
        while time.time() - start < seconds:
            drain()
            time.sleep(0.05)
    finally:
        for q in control_queues:
            q.put("STOP")
        for p in procs:
            p.join(timeout=config.response_timeout + 1.0)
            if p.is_alive():
                p.terminate()
        server.terminate()
        server.join(timeout=5.0)
        drain()

    elapsed = time.time() - start
    ts = int(time.time())
    fname = f"calcipc_log_{ts}.txt"
    with open(fname, "w", encoding="utf-8") as f:
        f.write("\n".join(timeline))

    print(f"Headless run finished; log written to {fname}")
    print(diagnostics.summary(elapsed))
    return diagnostics


def parse_args():
    p = argparse.ArgumentParser(description="Run a short headless calculator IPC simulation")
    p.add_argument("--clients", type=int, default=3, help="Number of client processes to spawn")
    p.add_argument("--seconds", type=int, default=5, help="How long to run the simulation")
    p.add_argument("--dir", dest="directory", default=None, help="Shared directory")
    p.add_argument("--timeout", type=float, default=5.0, help="Client response timeout")
    return p.parse_args()


if __name__ == "__main__":
    args = parse_args()
    mp.set_start_method("spawn", force=False)
    cfg = ProtocolConfig.from_env().with_overrides(
        directory=args.directory, response_timeout=args.timeout)
    run_headless(args.clients, args.seconds, cfg)
