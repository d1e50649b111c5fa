import numpy as np
import pandas as pd
from grouped_fitting import modeler

rng = np.random.default_rng(0)
t = np.array([0, 29, 36, 42, 56, 76, 92, 100, 108], dtype=float)

rows = []
for plot in range(1, 7):
    t1 = rng.uniform(35, 45)
    t2 = t1 + rng.uniform(18, 28)
    k = rng.uniform(85, 100)
    ramp = np.clip((t - t1) / (t2 - t1), 0.0, 1.0) * k
    for ti, yi in zip(t, ramp + rng.normal(0, 1.0, size=t.size)):
        rows.append({"plot": plot, "genotype": f"G{plot % 3}", "time": ti, "canopy": max(yi, 0.0)})
data = pd.DataFrame(rows)

run = modeler(
    data,
    x="time",
    y="canopy",
    grp="plot",
    keep="genotype",
    fn="linear_plateau",
    parameters={"t1": 40, "t2": 70, "k": 100},
)

print(run.params())
print(run.coef().round(4))
print(run.confint(level=0.95, params=["t1", "t2"]).round(3))
print(run.goodness_of_fit().round(4))
