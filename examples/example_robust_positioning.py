"""
Robust Ranging + RSSI Positioning Example.

This script demonstrates robust position estimation from a WiFi fingerprint
mixing ranging (RTT) and RSSI readings with gross outliers:

    - Example 1: Comparison of robust methods on ranging with outliers
    - Example 2: Sequential ranging then RSSI estimation
    - Example 3: Accuracy over Monte Carlo trials

Run:
    python examples/example_robust_positioning.py
"""

import logging

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from indoorpos.estimators import RobustEstimatorMethod
from indoorpos.eval import compute_error_stats, confidence_ellipse, confidence_radius
from indoorpos.exceptions import PositioningError
from indoorpos.position import (
    CallbackListener,
    RobustPassConfig,
    RobustRangingPositionEstimator,
    SequentialRobustRangingAndRssiPositionEstimator,
)
from indoorpos.radio import (
    Fingerprint,
    RadioSourceWithPowerAndLocated,
    RangingAndRssiReading,
    received_power_dbm,
)

TX_POWER_DBM = 20.0
RANGING_STD = 0.3  # m
RSSI_STD = 2.0  # dB


def make_access_points():
    """Access points on the walls of a 30 m x 20 m floor."""
    positions = np.array([
        [0.0, 0.0], [15.0, 0.0], [30.0, 0.0], [30.0, 10.0], [30.0, 20.0],
        [15.0, 20.0], [0.0, 20.0], [0.0, 10.0], [10.0, 10.0], [22.0, 12.0],
    ])
    return [
        RadioSourceWithPowerAndLocated(
            f"00:11:22:33:44:{i:02x}",
            position=p,
            transmitted_power_dbm=TX_POWER_DBM,
            transmitted_power_standard_deviation=0.5,
        )
        for i, p in enumerate(positions)
    ]


def simulate_fingerprint(sources, true_pos, rng, outlier_ratio=0.2):
    """Ranging + RSSI readings; a fraction of ranges suffer NLOS excess delay."""
    readings = []
    for source in sources:
        distance = float(np.linalg.norm(source.position - true_pos))
        measured = distance + RANGING_STD * rng.standard_normal()
        if rng.uniform() < outlier_ratio:
            measured += rng.uniform(3.0, 15.0)  # NLOS bias
        rssi = received_power_dbm(TX_POWER_DBM, distance) + RSSI_STD * rng.standard_normal()
        readings.append(
            RangingAndRssiReading(
                source,
                distance=max(measured, 0.0),
                rssi=rssi,
                distance_standard_deviation=RANGING_STD,
                rssi_standard_deviation=RSSI_STD,
            )
        )
    return Fingerprint(readings)


def example_method_comparison():
    """Example 1: Robust methods on ranging readings with outliers."""
    print("=" * 70)
    print("Example 1: Robust Methods on Ranging with NLOS Outliers")
    print("=" * 70)

    rng = np.random.default_rng(1)
    sources = make_access_points()
    true_pos = np.array([12.0, 7.0])
    fingerprint = Fingerprint([
        r.to_ranging_reading() for r in simulate_fingerprint(sources, true_pos, rng, 0.3)
    ])

    print(f"\nTrue position: {true_pos}")
    print(f"\n{'Method':<10} {'Position':<24} {'Error (m)':>10} {'Inliers':>8}")
    print("-" * 56)

    results = {}
    for method in RobustEstimatorMethod:
        estimator = RobustRangingPositionEstimator(
            sources,
            fingerprint,
            source_quality_scores=np.ones(len(sources)),
            reading_quality_scores=np.ones(len(fingerprint)),
            robust_method=method,
            threshold=1.0 if not method.median_based else None,
            seed=0,
        )
        try:
            position = estimator.estimate()
        except PositioningError as e:
            print(f"{method.name:<10} failed: {e}")
            continue

        error = np.linalg.norm(position - true_pos)
        inliers = estimator.inliers_data.num_inliers
        print(f"{method.name:<10} {np.array2string(position, precision=3):<24} "
              f"{error:>10.3f} {inliers:>5}/{len(fingerprint)}")
        results[method] = estimator

    return sources, true_pos, results


def example_sequential():
    """Example 2: Sequential ranging then RSSI estimation."""
    print("\n" + "=" * 70)
    print("Example 2: Sequential Ranging + RSSI Estimation")
    print("=" * 70)

    rng = np.random.default_rng(2)
    sources = make_access_points()
    true_pos = np.array([21.0, 15.0])
    fingerprint = simulate_fingerprint(sources, true_pos, rng)

    progress = []
    estimator = SequentialRobustRangingAndRssiPositionEstimator(
        sources=sources,
        fingerprint=fingerprint,
        source_quality_scores=np.ones(len(sources)),
        reading_quality_scores=np.ones(len(fingerprint)),
        listener=CallbackListener(on_progress_change=lambda est, p: progress.append(p)),
        ranging_config=RobustPassConfig(robust_method=RobustEstimatorMethod.PROMEDS),
        rssi_config=RobustPassConfig(robust_method=RobustEstimatorMethod.LMEDS),
        progress_delta=0.25,
        seed=42,
    )
    position = estimator.estimate()

    print(f"\nTrue position:            {true_pos}")
    print(f"Ranging pass estimate:    {estimator.ranging_estimated_position}")
    print(f"RSSI pass estimate:       {estimator.rssi_estimated_position}")
    print(f"Final error:              {np.linalg.norm(position - true_pos):.3f} m")
    print(f"Ranging inliers:          {estimator.ranging_inliers_data.num_inliers}/{len(sources)}")
    print(f"Progress notifications:   {np.round(progress, 2)}")

    radius = confidence_radius(estimator.covariance, 0.95)
    print(f"95% confidence radius:    {radius:.3f} m")

    return estimator, true_pos


def example_monte_carlo(num_trials=100):
    """Example 3: Accuracy statistics over random receiver positions."""
    print("\n" + "=" * 70)
    print(f"Example 3: Monte Carlo Accuracy ({num_trials} trials)")
    print("=" * 70)

    rng = np.random.default_rng(3)
    sources = make_access_points()
    errors = []

    for trial in tqdm(range(num_trials), desc="Monte Carlo trials", unit="trial"):
        true_pos = rng.uniform([2.0, 2.0], [28.0, 18.0])
        fingerprint = simulate_fingerprint(sources, true_pos, rng)
        estimator = RobustRangingPositionEstimator(
            sources, [r.to_ranging_reading() for r in fingerprint],
            robust_method=RobustEstimatorMethod.MSAC, threshold=1.0, seed=trial,
        )
        try:
            errors.append(estimator.estimate() - true_pos)
        except PositioningError as e:
            print(f"  trial {trial}: {e}")

    stats = compute_error_stats(np.array(errors))
    print(f"\n{'Metric':<10} {'Value (m)':>10}")
    print("-" * 22)
    for key in ["mean", "median", "rmse", "p90", "p95", "max"]:
        print(f"{key:<10} {stats[key]:>10.3f}")

    return stats


def plot_results(sources, true_pos, results):
    """Plot access points, estimates and their 95% confidence ellipses."""
    fig, ax = plt.subplots(figsize=(10, 7))

    ap_positions = np.array([s.position for s in sources])
    ax.scatter(ap_positions[:, 0], ap_positions[:, 1], marker="^", s=150,
               c="red", edgecolors="black", label="Access points", zorder=5)
    ax.scatter(*true_pos, marker="*", s=300, c="green", edgecolors="black",
               label="True position", zorder=6)

    t = np.linspace(0.0, 2.0 * np.pi, 100)
    for method, estimator in results.items():
        position = estimator.estimated_position
        ax.scatter(*position, s=60, label=method.name, zorder=4)
        if estimator.covariance is not None:
            semi_axes, axes = confidence_ellipse(estimator.covariance, 0.95)
            ellipse = axes @ (semi_axes[:, None] * np.vstack([np.cos(t), np.sin(t)]))
            ax.plot(position[0] + ellipse[0], position[1] + ellipse[1], alpha=0.6)

    ax.grid(True, alpha=0.3)
    ax.set_aspect("equal")
    ax.set_xlabel("East (m)", fontsize=12)
    ax.set_ylabel("North (m)", fontsize=12)
    ax.set_title("Robust Ranging Positioning", fontsize=14, fontweight="bold")
    ax.legend(loc="best")
    fig.tight_layout()
    return fig


def main():
    """Run all examples."""
    logging.basicConfig(level=logging.INFO)

    sources, true_pos, results = example_method_comparison()
    example_sequential()
    example_monte_carlo()

    print("\n" + "=" * 70)
    print("Generating visualization...")
    print("=" * 70)

    plot_results(sources, true_pos, results)
    plt.savefig("examples/robust_positioning_example.png", dpi=150, bbox_inches="tight")
    print("\nFigure saved: robust_positioning_example.png")

    plt.show()

    print("\n" + "=" * 70)
    print("Examples completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    main()
