import numpy as np
from grouped_fitting import ObservationGroup, fit_all

# Canopy cover of one plot over time.
t = np.array([0, 29, 36, 42, 56, 76, 92, 100, 108], dtype=float)
y = np.array([0, 0, 0.67, 15.11, 77.38, 99.81, 99.81, 99.81, 99.81])

run = fit_all(
    [ObservationGroup(uid=1, x=t, y=y)],
    "linear_plateau",
    initial_values={"t1": 40, "t2": 70, "k": 100},
)
print(run.summary())

# Value at day 45, and the duration of the linear phase.
print(run.predict(x=45))
print(run.predict(formula="t2 - t1"))
