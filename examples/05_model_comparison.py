import numpy as np
from grouped_fitting import ObservationGroup, fit_all

rng = np.random.default_rng(4)
x = np.linspace(0, 3, 25)
groups = [
    ObservationGroup(uid=u, x=x, y=c * x**2 + x + 1 + rng.normal(0, 0.2, x.size))
    for u, c in ((1, 0.0), (2, 0.8))
]

line = fit_all(groups, "linear", initial_values={"m": 1, "b": 0})
quad = fit_all(groups, "quadratic", initial_values={"a": 0, "b": 1, "c": 0})

print(line.aic().merge(quad.aic(), on="uid", suffixes=("_linear", "_quadratic")))
print(line.anova(quad))

# Influence diagnostics for the curved group under the straight line.
print(line.augment(uids=[2]).round(3))
