# main.py
"""
EchoCheck – Passive Pointer Biometrics Verification
Entry point for local demonstration.

Launches two processes:
1. FastAPI verification server (on port 8000)
2. Capture client that watches the pointer (or replays a synthetic path)
   and submits its score to the server

Use Ctrl+C to terminate.
"""

import os
import sys

# Add project root to Python path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import argparse
import logging
import multiprocessing
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import requests

from shared.config import CaptureConfig, Config

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger("echocheck")


# ----------------------------------------------------------------------
# 1. Verification Server Process
# ----------------------------------------------------------------------

def run_server(host: str, port: int):
    """Start Uvicorn with the API factory."""
    import uvicorn

    logger.info(f"Server starting on http://{host}:{port}")
    uvicorn.run("server.api:create_app", factory=True, host=host, port=port, log_level="info")


# ----------------------------------------------------------------------
# 2. Capture Client Process
# ----------------------------------------------------------------------

def wait_for_server(server_url: str, attempts: int = 10) -> bool:
    for _ in range(attempts):
        try:
            resp = requests.get(f"{server_url}/health", timeout=1)
            if resp.status_code == 200:
                health = resp.json()
                if not health.get("durable", False):
                    logger.warning("Server is running without durable replay protection")
                return True
        except requests.exceptions.RequestException:
            pass
        time.sleep(1)
    return False


def run_client(identity: str, server_url: str, model_path: str, simulate: str = "", seed=None):
    """
    Run one capture session until it verifies or fails.

    Args:
        identity: Site key to verify for.
        server_url: Base URL of the verification server.
        model_path: Scoring asset location (path or URL).
        simulate: "", "linear", "noise" or "human"; empty means real pointer input.
        seed: Random seed for synthetic paths.
    """
    from client.capture_session import init_session
    from client.interaction_listener import PointerEventBus, RealPointerListener, SimulatedPointerSource
    from client import simulation

    config = CaptureConfig(model_path=model_path, verify_endpoint=f"{server_url}/api/verify")
    if not wait_for_server(server_url):
        logger.warning("Server not responding; submission will fail if the score passes")

    bus = PointerEventBus()
    done = threading.Event()

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="echocheck-finalize") as executor:
        session = init_session(identity, bus, config=config, executor=executor, is_simulating=bool(simulate))

        @session.on_features
        def show_features(features):
            logger.debug(f"Live features: {[round(v, 3) for v in features]}")

        @session.on_verified
        def verified(token):
            logger.info(f"VERIFIED, token: {token}")
            done.set()

        @session.on_failed
        def failed(score, reason):
            logger.info(f"FAILED, score {score:.4f} ({reason})")
            done.set()

        if simulate:
            generators = {
                "linear": simulation.linear_path,
                "noise": lambda: simulation.noise_path(seed=seed),
                "human": lambda: simulation.human_path(seed=seed),
            }
            source = SimulatedPointerSource(bus, generators[simulate]())
        else:
            source = RealPointerListener(bus)
            logger.info("Move the pointer naturally for a few seconds...")

        source.start()
        try:
            while not done.wait(timeout=0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Received shutdown signal")
        finally:
            source.stop()
            session.close()


# ----------------------------------------------------------------------
# 3. Main Orchestrator
# ----------------------------------------------------------------------

def parse_arguments():
    """Parse command line arguments."""
    defaults = CaptureConfig()
    parser = argparse.ArgumentParser(description="EchoCheck verification demo")
    parser.add_argument("--host", default=Config.SERVER_HOST, help="Server bind address")
    parser.add_argument("--port", type=int, default=Config.SERVER_PORT, help="Server port")
    parser.add_argument("--server-only", action="store_true", help="Run only the verification server")
    parser.add_argument("--client-only", action="store_true", help="Run only the capture client")
    parser.add_argument("--identity", default="DEMO_PUBLIC_KEY", help="Site key sent with the score")
    parser.add_argument("--model", default=defaults.model_path, help="Scoring model asset (path or URL)")
    parser.add_argument("--simulate", choices=["linear", "noise", "human"], default="",
                        help="Replay a synthetic path instead of capturing the real pointer")
    parser.add_argument("--seed", type=int, default=None, help="Seed for synthetic paths")
    parser.add_argument("--ledger", choices=["auto", "sql", "memory"], default=Config.LEDGER_BACKEND,
                        help="Nonce ledger backend")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_arguments()

    # Child processes read the ledger choice from the environment
    os.environ["ECHOCHECK_LEDGER"] = args.ledger
    server_url = f"http://{args.host}:{args.port}"

    print("\n" + "=" * 70)
    print("ECHOCHECK - Passive Pointer Verification")
    print("=" * 70)
    print(f"Server: {server_url}")
    print(f"Ledger: {args.ledger}")
    print(f"Input:  {'simulated ' + args.simulate if args.simulate else 'real pointer'}")
    print("=" * 70 + "\n")

    if args.server_only:
        run_server(args.host, args.port)
        sys.exit(0)
    if args.client_only:
        run_client(args.identity, server_url, args.model, args.simulate, args.seed)
        sys.exit(0)

    try:
        multiprocessing.set_start_method("spawn", force=True)
    except RuntimeError:
        pass

    server_process = multiprocessing.Process(target=run_server, args=(args.host, args.port), name="Server")
    server_process.start()
    time.sleep(2)  # Give server time to start

    try:
        run_client(args.identity, server_url, args.model, args.simulate, args.seed)
    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    finally:
        if server_process.is_alive():
            logger.info("Terminating server...")
            server_process.terminate()
            server_process.join(timeout=3.0)
        logger.info("Shutdown complete")
