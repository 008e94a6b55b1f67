import logging

from src.application.model_walker import InvariantObserver, ModelWalker, StateVerificationObserver
from src.main import configure_logging


logger = logging.getLogger(__name__)


def run_walks(seeds: range) -> None:
    for seed in seeds:
        random_report = ModelWalker(observers=[InvariantObserver()], seed=seed).random_walk()
        tour_report = ModelWalker(
            observers=[InvariantObserver(), StateVerificationObserver()], seed=seed
        ).transition_tour()
        logger.info(
            "seed=%s random_walk steps=%s edges=%s/%s | transition_tour steps=%s edges=%s/%s",
            seed,
            random_report.steps,
            random_report.edges_covered,
            random_report.edges_total,
            tour_report.steps,
            tour_report.edges_covered,
            tour_report.edges_total,
        )


def main() -> None:
    configure_logging()
    run_walks(range(5))
    print("Simulation complete.")


if __name__ == "__main__":
    main()
