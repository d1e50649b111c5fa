import numpy as np
from grouped_fitting import AUC, Derivative, ObservationGroup, fit_all, infer

t = np.array([0, 29, 36, 42, 56, 76, 92, 100, 108], dtype=float)
y = np.array([0, 0, 0.67, 15.11, 77.38, 99.81, 99.81, 99.81, 99.81])
run = fit_all(
    [ObservationGroup(uid="plot-1", x=t, y=y)],
    "linear_plateau",
    initial_values={"t1": 40, "t2": 70, "k": 100},
)

# Growth rate during the linear phase.
print(infer(run, Derivative(x=[45, 50, 55])))

# Area under the canopy curve over the season, and over its first half.
print(infer(run, AUC()))
print(run.predict(x=(0, 54), type="auc", n_points=500))

# Prediction band at a few days.
print(run.predict(x=[40, 50, 60], se_interval="prediction"))

# Tangent at day 50 and the day canopy reached 50%.
print(run.compute_tangent(x=50))
print(run.inverse_predict(y=50))
