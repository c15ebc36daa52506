"""Example usage of the train route Simulation."""

import logging
import sys
from pathlib import Path

# Add src to path so we can import trainsim
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainsim import Simulation, default_catalog
from trainsim.geometry import lerp

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.5


class ManualClock:
    """Simulated wall clock advanced by the demo loop (starts at 08:00)."""

    def __init__(self, start: float = 8 * 3600):
        self.now = start

    def __call__(self) -> float:
        return self.now


def print_snapshots(snapshots):
    for snap in snapshots:
        etas = ", ".join(f"{name}: {eta:5.1f}s" for name, eta in snap.station_etas.items())
        phase = snap.phase.value if snap.phase else "sensed"
        print(
            f"  {snap.train_id:<22} {snap.route_key:<6} seg {snap.segment} "
            f"t={snap.fraction:.2f} {snap.direction.value:<7} [{phase}] {etas}"
        )


def run_route(route_id: str, ticks: int = 120):
    """
    Spawn a simulated train on a route and follow it alongside a sensed train
    driving the legacy Main line.

    Args:
        route_id: Route to request (e.g., "R001").
        ticks: Number of ticks to run.
    """
    print(f"\n{'='*70}")
    print(f"Simulating route: {route_id}")
    print(f"{'='*70}\n")

    clock = ManualClock()
    catalog = default_catalog()
    sim = Simulation(catalog, clock=clock)

    train_id = sim.request_route(route_id, requester="demo")
    if train_id is None:
        print(f"Route {route_id} could not be requested")
        print(f"Available routes: {', '.join(catalog.route_ids())}")
        sys.exit(1)

    main = catalog.get_route("Main")
    waypoints = main.world_waypoints

    def sensed_position(step: int):
        # Drive the sensed train along Main at one segment per 20 ticks
        progress = (step / 20.0) % (len(waypoints) - 1)
        i = int(progress)
        return lerp(waypoints[i], waypoints[i + 1], progress - i)

    try:
        for step in range(ticks):
            snapshots = sim.tick(TICK_SECONDS, {"Sensed1_Main": sensed_position(step)})
            if step % 10 == 0:
                print(f"Tick {step} (t+{step * TICK_SECONDS:.1f}s):")
                print_snapshots(snapshots)
            clock.now += TICK_SECONDS
    except Exception as e:
        logger.error(f"Simulation failed: {e}", exc_info=True)
        sys.exit(1)

    print("\n" + "=" * 70)
    print(f"Broadcaster: {sim.broadcaster.report()}")
    print("=" * 70 + "\n")


def interactive_mode():
    """
    Run in interactive mode, requesting routes and stepping the simulation.
    """
    print("TrainSim - Interactive Mode")
    print("Commands: <routeId> to request a train, 'step N' to run N ticks, 'quit' to exit\n")

    clock = ManualClock()
    sim = Simulation(default_catalog(), clock=clock)
    print(f"Routes: {', '.join(sim.catalog.route_ids())}\n")

    while True:
        try:
            user_input = input("> ").strip()

            if user_input.lower() in ["quit", "q", "exit"]:
                print("Goodbye!")
                break

            if not user_input:
                continue

            if user_input.startswith("step"):
                parts = user_input.split()
                count = int(parts[1]) if len(parts) > 1 else 1
                snapshots = []
                for _ in range(count):
                    snapshots = sim.tick(TICK_SECONDS)
                    clock.now += TICK_SECONDS
                print_snapshots(snapshots)
                continue

            train_id = sim.request_route(user_input)
            if train_id:
                print(f"Requested {train_id}")
            else:
                print(f"Request for {user_input} was rejected")

        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.error(f"Error: {e}", exc_info=True)
            print(f"Error: {e}")


if __name__ == "__main__":
    if len(sys.argv) > 1:
        # Command line mode: pass route id as argument
        run_route(sys.argv[1])
    else:
        interactive_mode()
