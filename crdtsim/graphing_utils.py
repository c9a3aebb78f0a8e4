"""
Graphing utilities for visualizing convergence experiments.

Provides a bar chart of convergence rates across variants, a settle-time
CDF, and a box plot comparing settle times.
"""

import plotly.graph_objects as go

from .experiments import ExperimentResults


def make_convergence_bar_chart(
    results_list: list[ExperimentResults],
    title: str = "Convergence Rate by Variant",
) -> go.Figure:
    """Create a bar chart of convergence rates with confidence intervals.

    Args:
        results_list: Results of one experiment per variant.
        title: Plot title.

    Returns:
        Plotly Figure object.
    """
    labels = [results.variant.value for results in results_list]
    rates = [results.convergence_rate() * 100 for results in results_list]

    error_plus = []
    error_minus = []
    for results, rate in zip(results_list, rates):
        ci = results.convergence_rate_ci()
        if ci is None:
            error_plus.append(0.0)
            error_minus.append(0.0)
        else:
            error_plus.append(ci[1] * 100 - rate)
            error_minus.append(rate - ci[0] * 100)

    fig = go.Figure(
        go.Bar(
            x=labels,
            y=rates,
            error_y=dict(type="data", symmetric=False, array=error_plus, arrayminus=error_minus),
        )
    )
    fig.update_layout(
        title=title,
        xaxis_title="Variant",
        yaxis_title="Trials converged (%)",
        yaxis_range=[0, 100],
        showlegend=False,
    )
    return fig


def make_settle_time_cdf(
    results: ExperimentResults,
    percentiles: tuple[float, ...] = (50, 90, 99),
) -> go.Figure:
    """Empirical CDF of how long one variant's trials took to go quiescent.

    Trials that timed out are left out. Each requested percentile is marked
    with a dashed horizontal line labelled with its settle time.
    """
    title = f"Settle Time ({results.variant.value})"
    times, cdf = results.settle_time_cdf()

    fig = go.Figure()
    if len(times) == 0:
        fig.update_layout(title=f"{title} (no data)")
        return fig

    fig.add_trace(go.Scatter(x=times, y=cdf, mode="lines", line=dict(color="steelblue", width=2)))
    for p in percentiles:
        fig.add_hline(
            y=p / 100,
            line_dash="dash",
            line_color="gray",
            annotation_text=f"p{p:g}: {results.settle_time_percentile(p):.0f}ms",
            annotation_position="right",
        )

    fig.update_layout(
        title=title,
        xaxis_title="Time after workload (ms)",
        yaxis_title="Fraction of trials settled",
        showlegend=False,
    )
    return fig


def make_settle_time_boxplot(
    results_list: list[ExperimentResults],
    title: str = "Settle Time Comparison",
) -> go.Figure:
    """Box plot comparing settle times across variants."""
    fig = go.Figure()

    for results in results_list:
        fig.add_trace(
            go.Box(
                y=results.settle_time_samples(),
                name=results.variant.value,
                boxmean=True,
            )
        )

    fig.update_layout(
        title=title,
        yaxis_title="Settle time (ms)",
        showlegend=False,
    )
    return fig
