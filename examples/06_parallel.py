import numpy as np
from grouped_fitting import FitOptions, ObservationGroup, fit_all


def report(progress):
    status = "ok" if progress.ok else "failed"
    print(f"[{progress.done}/{progress.total}] group {progress.uid}: {status}")


if __name__ == "__main__":
    rng = np.random.default_rng(6)
    t = np.array([0, 29, 36, 42, 56, 76, 92, 100, 108], dtype=float)
    base = np.array([0, 0, 0.67, 15.11, 77.38, 99.81, 99.81, 99.81, 99.81])
    groups = [
        ObservationGroup(uid=u, x=t, y=np.clip(base + rng.normal(0, 1.0, t.size), 0, None))
        for u in range(1, 9)
    ]
    # A group too short to fit is reported, not raised.
    groups.append(ObservationGroup(uid=99, x=[10.0, 20.0], y=[0.0, 1.0]))

    options = FitOptions(parallel=True, workers=2, executor="process", progress_callback=report)
    run = fit_all(
        groups, "linear_plateau", initial_values={"t1": 40, "t2": 70, "k": 100}, options=options
    )

    print(run.summary(digits=3))
