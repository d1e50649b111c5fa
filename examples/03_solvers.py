import numpy as np
from grouped_fitting import FitOptions, ObservationGroup, fit_all, list_solvers

print("solvers:", ", ".join(list_solvers()))

rng = np.random.default_rng(2)
t = np.linspace(0, 100, 30)
groups = [
    ObservationGroup(uid=u, x=t, y=a / (1 + np.exp(-0.12 * (t - t0))) + rng.normal(0, 1.0, t.size))
    for u, (a, t0) in enumerate([(100, 45), (90, 50), (80, 55)], start=1)
]

# Every solver runs from the same start; the lowest SSE wins per group.
options = FitOptions(
    solvers=("nelder-mead", "powell", "least-squares", "differential-evolution"),
    solver_control={"differential-evolution": {"seed": 0, "maxiter": 100}},
)
run = fit_all(
    groups,
    "logistic",
    initial_values={"a": 0.1, "t0": 50, "k": 90},
    bounds=({"a": 0.0, "t0": 0.0, "k": 0.0}, {"a": 1.0, "t0": 100.0, "k": 200.0}),
    options=options,
)
print(run.metrics()[["uid", "solver", "objective_value", "converged", "selected"]])

# Polish every group from its current estimates.
polished = run.update(solvers=["least-squares"])
print(polished.params()[["uid", "a", "t0", "k", "sse", "solver"]])
