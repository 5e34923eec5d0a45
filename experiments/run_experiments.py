"""
experiments/run_experiments.py

Experiment harness that loads the baseline config, applies scenario overrides,
runs multiple replications of the lane, and reports KPIs with confidence
intervals. The script is intentionally lightweight so we can tweak scenarios
or plug in other analysis pipelines as needed.
"""

from __future__ import annotations
import copy, logging, os, math
from typing import Dict, List, Callable
from statistics import mean, stdev

import yaml
from scipy.stats import t as t_dist

from drivethru.simulation import run_simulation
from experiments.scenarios import SCENARIOS

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

def load_cfg(path: str | None = None) -> Dict:
    path = path or os.path.join(ROOT, "config", "baseline.yaml")
    with open(path, "r") as f:
        return yaml.safe_load(f)

def apply_overrides(cfg: Dict, overrides: Dict) -> Dict:
    """Apply scenario overrides (recursive merge) on top of the base config."""
    new = copy.deepcopy(cfg)

    def _merge(dst: Dict, src: Dict):
        for key, val in src.items():
            if isinstance(val, dict) and isinstance(dst.get(key), dict):
                _merge(dst[key], val)
            else:
                dst[key] = copy.deepcopy(val)

    _merge(new, overrides)
    # A scenario that sets an explicit inter-arrival time drops the customers/hour target
    fac_over = overrides.get("facility", {})
    if "average_inter_arrival_time" in fac_over and "customers_per_hour" not in fac_over:
        new.get("facility", {}).pop("customers_per_hour", None)
    return new

def _tcrit(alpha: float, df: int) -> float:
    return float(t_dist.ppf(1 - alpha / 2.0, df))

def mean_ci(values: List[float], confidence_level: float) -> tuple[float, float]:
    """Return (mean, half-width) using a t-distribution critical value."""
    if not values:
        return 0.0, 0.0
    mu = mean(values)
    n = len(values)
    if n < 2:
        return mu, 0.0
    level = min(max(confidence_level, 0.0), 0.999999)
    alpha = 1.0 - level
    half = _tcrit(alpha, n - 1) * (stdev(values) / math.sqrt(n))
    return mu, half

def sample_stddev(values: List[float]) -> float:
    """Return sample standard deviation or 0 if insufficient data."""
    if len(values) < 2:
        return 0.0
    return stdev(values)

def run_crn(cfg: Dict, sc_a: Dict, sc_b: Dict, replications: int, base_seed: int,
            confidence: float, C: float, kpi: str = "avg_time_in_system_seconds") -> Dict:
    """
    Run a common-random-number comparison between two scenarios, using the same
    seed stream per replication, and report paired differences and the
    Bonferroni-adjusted CI of the mean difference.
    """
    results = []
    cfg_a = apply_overrides(cfg, sc_a["overrides"])
    cfg_b = apply_overrides(cfg, sc_b["overrides"])
    for rep in range(replications):
        seed = base_seed + rep
        cfg_a_run = copy.deepcopy(cfg_a); cfg_a_run.setdefault("sim", {})["seed"] = seed
        cfg_b_run = copy.deepcopy(cfg_b); cfg_b_run.setdefault("sim", {})["seed"] = seed
        res_a = run_simulation(cfg_a_run)
        res_b = run_simulation(cfg_b_run)
        results.append((seed, res_a.get(kpi, 0.0), res_b.get(kpi, 0.0)))
    diffs = [b - a for (_, a, b) in results]
    mean_diff = mean(diffs)
    sd_diff = stdev(diffs) if len(diffs) > 1 else 0.0
    level = min(max(confidence, 0.0), 0.999999)
    # Bonferroni: each of the C comparisons gets alpha_E / C
    alpha = (1.0 - level) / max(C, 1.0)
    df = max(1, len(diffs) - 1)
    half = _tcrit(alpha, df) * (sd_diff / math.sqrt(len(diffs))) if len(diffs) > 1 else 0.0
    print(f"CRN paired comparison of {kpi} (Scenario2 - Scenario1):")
    print("  Replication | Seed | Scenario1 | Scenario2 | Difference")
    for idx, (seed, v1, v2) in enumerate(results, start=1):
        print(f"    {idx:2d}        | {seed:4d} | {v1:9.2f} | {v2:9.2f} | {v2 - v1:9.2f}")
    print(f"  Mean difference: {mean_diff:,.2f}")
    print(f"  Std dev of differences: {sd_diff:,.2f}")
    print(f"  {level*100:.1f}% CI of mean diff: {mean_diff - half:,.2f} to {mean_diff + half:,.2f}")
    return {"mean_diff": mean_diff, "half_width": half, "diffs": diffs}

def series(results: List[Dict], extractor: Callable[[Dict], float]) -> List[float]:
    """Collect a numeric series from each replication result."""
    return [float(extractor(res)) for res in results]

def _occupancy_at(series: List[Dict[str, float]], target_seconds: float) -> float:
    """
    Occupancy is piecewise constant between recorded changes, so the value at
    any time is the last recorded point at or before it (0 before the first).
    """
    value = 0.0
    for pt in series:
        if pt["time"] > target_seconds:
            break
        value = pt.get("occupancy", 0.0)
    return value

def aggregate_time_series(results: List[Dict], duration_seconds: float,
                          interval_minutes: float) -> List[Dict[str, float]]:
    """
    Sample each replication's occupancy on a fixed grid and average across
    replications so the curves can be plotted against time.
    """
    if not results:
        return []
    if interval_minutes <= 0:
        interval_minutes = 5.0
    step = interval_minutes * 60.0
    grid = [i * step for i in range(int(math.ceil(duration_seconds / step)) + 1)]
    aggregated: List[Dict[str, float]] = []
    for t in grid:
        vals = [_occupancy_at(res.get("time_series", []), t) for res in results]
        aggregated.append({
            "time_minutes": t / 60.0,
            "occupancy": sum(vals) / len(vals),
        })
    return aggregated

def plot_time_series(series: List[Dict[str, float]], scenario_name: str, max_cars: float | None = None):
    """Persist a PNG of mean cars in the lane versus time for one scenario."""
    if not series:
        return None
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    x = [pt["time_minutes"] for pt in series]
    y = [pt["occupancy"] for pt in series]
    plt.figure(figsize=(9, 5))
    plt.step(x, y, where="post", label="Cars in lane (mean over replications)", color="#2563eb")
    if max_cars is not None:
        plt.axhline(max_cars, color="#f59e0b", linestyle="--", label="Admission limit")
    if x:
        plt.xlim(left=0, right=max(x))
    plt.xlabel("Time (minutes)")
    plt.ylabel("Cars in system")
    plt.title(f"{scenario_name}: lane occupancy")
    plt.legend()
    plt.grid(True, linestyle="--", alpha=0.4)
    out_dir = os.path.join(ROOT, "experiments", "output")
    os.makedirs(out_dir, exist_ok=True)
    safe_name = scenario_name.lower().replace(" ", "_")
    out_path = os.path.join(out_dir, f"{safe_name}_occupancy.png")
    plt.tight_layout()
    plt.savefig(out_path, dpi=160)
    plt.close()
    return out_path

def plot_all_scenarios(all_results: List[Dict], duration_minutes: float):
    """Overlay the occupancy curves of every scenario on one figure."""
    if not all_results:
        return None
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    plt.figure(figsize=(9, 5))
    for entry in all_results:
        series = entry.get("series", [])
        if not series:
            continue
        x = [pt["time_minutes"] for pt in series]
        y = [pt["occupancy"] for pt in series]
        plt.step(x, y, where="post", linewidth=1.5, label=entry.get("name", "scenario"))
    if duration_minutes:
        plt.xlim(0, duration_minutes)
    plt.xlabel("Time (minutes)")
    plt.ylabel("Cars in system")
    plt.title("Lane occupancy across scenarios")
    plt.grid(True, linestyle="--", alpha=0.4)
    plt.legend()
    out_dir = os.path.join(ROOT, "experiments", "output")
    os.makedirs(out_dir, exist_ok=True)
    out_path = os.path.join(out_dir, "all_scenarios_occupancy.png")
    plt.tight_layout()
    plt.savefig(out_path, dpi=160)
    plt.close()
    return out_path

def main():
    """Entry point: drive all scenarios, replications, and report KPIs."""
    cfg = load_cfg()
    logging.basicConfig(
        level=cfg.get("sim", {}).get("log_level", "WARNING"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    exp_cfg = cfg.get("experiments", {})
    replications = max(1, int(exp_cfg.get("replications", 1)))
    confidence = float(exp_cfg.get("confidence_level", 0.95))
    interval_minutes = float(exp_cfg.get("time_series_interval_minutes", 5.0))
    level_pct = confidence * 100.0
    default_seed = cfg.get("sim", {}).get("seed", 0)

    all_lines: List[Dict] = []
    for sc in SCENARIOS:
        sc_base_cfg = apply_overrides(cfg, sc["overrides"])
        scenario_seed = sc_base_cfg.get("sim", {}).get("seed", default_seed)
        seed_range = (scenario_seed, scenario_seed + replications - 1)
        results = []
        for rep in range(replications):
            sc_cfg = copy.deepcopy(sc_base_cfg)
            sc_cfg.setdefault("sim", {})
            # Advance the RNG seed per replication so replications remain iid but scenario-specific seeds stick.
            sc_cfg["sim"]["seed"] = scenario_seed + rep
            results.append(run_simulation(sc_cfg))

        # Collect KPI distributions across replications so we can report means with CIs.
        served = mean_ci(series(results, lambda r: r.get("cars_served", 0)), confidence)
        throughput = mean_ci(series(results, lambda r: r.get("throughput_per_hour", 0.0)), confidence)
        tis = mean_ci(series(results, lambda r: r.get("avg_time_in_system_seconds", 0.0)), confidence)
        tis_sd = sample_stddev(series(results, lambda r: r.get("avg_time_in_system_seconds", 0.0)))
        p90 = mean_ci(series(results, lambda r: r.get("p90_time_in_system_seconds", 0.0)), confidence)
        occupancy = mean_ci(series(results, lambda r: r.get("mean_cars_in_system", 0.0)), confidence)
        peak = mean_ci(series(results, lambda r: r.get("peak_cars_in_system", 0)), confidence)
        blocked_cap = mean_ci(series(results, lambda r: r.get("spawn_blocked", {}).get("capacity", 0)), confidence)
        blocked_area = mean_ci(series(results, lambda r: r.get("spawn_blocked", {}).get("spawn_area", 0)), confidence)
        rho = results[0].get("traffic_intensity", 0.0)

        duration = float(sc_base_cfg.get("sim", {}).get("duration_seconds", 3600.0))
        agg_series = aggregate_time_series(results, duration, interval_minutes)
        max_cars = sc_base_cfg.get("facility", {}).get("max_cars")
        plot_path = plot_time_series(agg_series, sc["name"], max_cars)
        all_lines.append({"name": sc["name"], "series": agg_series})

        print(f"Scenario: {sc['name']} (replications={replications}, {level_pct:.1f}% CI, seeds {seed_range[0]}-{seed_range[1]})")
        print(f"  Traffic intensity (rho, end of run): {rho:.3f}")
        print(f"  Cars served: {served[0]:.1f} ± {served[1]:.1f}")
        print(f"  Throughput: {throughput[0]:.1f} ± {throughput[1]:.1f} cars/hour")
        print(f"  Avg time in system: {tis[0]:.1f} ± {tis[1]:.1f} s (sd {tis_sd:.1f})")
        print(f"  p90 time in system: {p90[0]:.1f} ± {p90[1]:.1f} s")
        print(f"  Mean cars in system: {occupancy[0]:.2f} ± {occupancy[1]:.2f}")
        print(f"  Peak cars in system: {peak[0]:.1f} ± {peak[1]:.1f}")
        print(f"  Spawns refused (lane full): {blocked_cap[0]:.1f} ± {blocked_cap[1]:.1f}")
        print(f"  Spawns refused (entry blocked): {blocked_area[0]:.1f} ± {blocked_area[1]:.1f}")
        if plot_path:
            print(f"  Occupancy plot saved to: {plot_path}")
        print("-")

    # Optional CRN comparison between named scenarios using common random numbers
    crn_pairs = exp_cfg.get("crn_compare")
    if crn_pairs:
        sc_index = {s["name"]: s for s in SCENARIOS}
        # Bonferroni: C = K(K-1)/2 comparisons among K alternative designs
        K = len(crn_pairs)
        C = max(1.0, K * (K - 1) / 2)
        for pair in crn_pairs:
            if len(pair) != 2:
                print(f"[warn] skipping CRN entry (needs 2 names): {pair}")
                continue
            sc_a = sc_index.get(pair[0])
            sc_b = sc_index.get(pair[1])
            if sc_a and sc_b:
                print(f"\nCRN & Bonferroni Comparison: {sc_a['name']} vs {sc_b['name']} (replications={replications}, seeds shared)")
                run_crn(cfg, sc_a, sc_b, replications, default_seed, confidence, C)
            else:
                print(f"[warn] CRN pair not found: {pair}")

    cross_plot = plot_all_scenarios(
        all_lines,
        duration_minutes=float(cfg.get("sim", {}).get("duration_seconds", 3600.0)) / 60.0,
    )
    if cross_plot:
        print(f"\nAll-scenario occupancy plot saved to: {cross_plot}")

if __name__ == "__main__":
    main()
