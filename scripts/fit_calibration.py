# Usage:
#   python scripts/fit_calibration.py data/calibration.csv [calibration/params.json]
import sys

from matdecomp import FitConvergenceError, fit_from_file, setup_logging

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/fit_calibration.py <calibration.csv> [out.json]")
        sys.exit(2)
    setup_logging()
    table = sys.argv[1]
    out_json = sys.argv[2] if len(sys.argv) > 2 else "calibration/params.json"
    try:
        fit = fit_from_file(table, out_json=out_json)
    except FitConvergenceError as e:
        print(f"Calibration failed ({e.reason}): {e}")
        sys.exit(1)
    print("Fitted params:", list(fit.params))
    print(f"RMSE: {fit.rmse:.4g}  ->  {out_json}")
