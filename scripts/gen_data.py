"""
Write a synthetic dual-energy calibration table (density, low, high) for trying out the fitter.
"""
from pathlib import Path

from scripts.gen_data import make_calibration

# Mildly curved response with a non-trivial denominator
TRUE_PARAMS = [0.01, 0.6, -0.2, 0.05, 0.03, -0.02, 0.25, -0.1]


def main(outdir="data", n=24, noise_rel=0.01, seed=123):
    Path(outdir).mkdir(parents=True, exist_ok=True)
    df = make_calibration(TRUE_PARAMS, n=n, noise_rel=noise_rel, seed=seed)
    out = Path(outdir) / "calibration.csv"
    df.to_csv(out, index=False)
    print(f"Wrote {n} calibration samples to '{out}'")


if __name__ == "__main__":
    main()
