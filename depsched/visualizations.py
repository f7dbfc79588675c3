from datetime import timedelta
from typing import Dict, Any, List, Optional

import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import networkx as nx
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .critical_path import CriticalPathAnalyzer
from .graph import DependencyGraph
from .models import CriticalPathEntry, DependencyType, ProjectSnapshot

DEFAULT_THEME: Dict[str, Any] = {
    "critical": "#d62728",
    "noncritical": "#1f77b4",
    "node_crit": "#ffcccb",
    "node_noncrit": "#cfe2f3",
    "edge_fs": "#3b82f6",
    "edge_ss": "#10b981",
    "edge_ff": "#f59e0b",
    "edge_sf": "#ef4444",
    "surface": "#ffffff",
    "ink": "#1f2933",
    "border": "#e4e7eb",
}

EDGE_STYLES = {
    DependencyType.FINISH_TO_START: ("edge_fs", "solid"),
    DependencyType.START_TO_START: ("edge_ss", "dashed"),
    DependencyType.FINISH_TO_FINISH: ("edge_ff", "dotted"),
    DependencyType.START_TO_FINISH: ("edge_sf", "dashdot"),
}


def _critical_lookup(
    snapshot: ProjectSnapshot, entries: Optional[List[CriticalPathEntry]]
) -> Dict[str, CriticalPathEntry]:
    if entries is None:
        entries = CriticalPathAnalyzer(snapshot).analyze()
    return {e.task_id: e for e in entries}


def build_network_graph(snapshot: ProjectSnapshot) -> nx.DiGraph:
    """Directed graph with edges running predecessor -> dependent."""
    G = nx.DiGraph()
    depths = DependencyGraph.from_tasks(snapshot).dependency_depths()
    for task in snapshot:
        G.add_node(task.id, level=depths[task.id], task=task)
    for task in snapshot:
        for edge in task.dependencies:
            lag_str = f"+{edge.lag_days}" if edge.lag_days >= 0 else str(edge.lag_days)
            G.add_edge(
                edge.predecessor_id,
                task.id,
                label=f"{edge.type.code}({lag_str})",
                rel_type=edge.type,
                lag=edge.lag_days,
            )
    return G


def create_network_diagram(
    snapshot: ProjectSnapshot,
    entries: Optional[List[CriticalPathEntry]] = None,
    theme: Optional[Dict[str, Any]] = None,
) -> plt.Figure:
    """
    Create a network diagram visualization using NetworkX and Matplotlib.

    Tasks are laid out left to right by dependency depth; critical tasks get a
    highlighted border and edge styles follow the relationship type.
    """
    theme = theme or DEFAULT_THEME
    if not len(snapshot):
        fig, ax = plt.subplots(figsize=(10, 6))
        ax.text(0.5, 0.5, 'No tasks to display', ha='center', va='center', fontsize=14)
        ax.axis('off')
        return fig

    critical = _critical_lookup(snapshot, entries)
    G = build_network_graph(snapshot)

    num_nodes = G.number_of_nodes()
    fig, ax = plt.subplots(figsize=(max(14, int(num_nodes * 0.8)), max(10, int(num_nodes * 0.5))))
    pos = nx.multipartite_layout(G, subset_key="level")

    for u, v, data in G.edges(data=True):
        color_key, style = EDGE_STYLES[data["rel_type"]]
        nx.draw_networkx_edges(G, pos, edgelist=[(u, v)],
                               edge_color=theme[color_key], style=style,
                               arrows=True, arrowsize=20,
                               connectionstyle="arc3,rad=0.1",
                               ax=ax, width=2)

    nx.draw_networkx_edge_labels(G, pos, nx.get_edge_attributes(G, 'label'), font_size=8, ax=ax)

    critical_nodes = [n for n in G.nodes() if critical[n].is_critical]
    non_critical_nodes = [n for n in G.nodes() if not critical[n].is_critical]

    nx.draw_networkx_nodes(G, pos, nodelist=non_critical_nodes,
                           node_color=theme["node_noncrit"], node_size=3000,
                           node_shape='s', ax=ax)
    nx.draw_networkx_nodes(G, pos, nodelist=critical_nodes,
                           node_color=theme["node_crit"], node_size=3000,
                           node_shape='s', ax=ax, edgecolors=theme["critical"], linewidths=3)

    labels = {}
    for node in G.nodes():
        task = snapshot.get(node)
        entry = critical[node]
        pin = " (pinned)" if task.manual_override_dates else ""
        labels[node] = (
            f"{node}{pin}\nD:{task.duration_days}\n"
            f"{task.start_date:%m-%d}..{task.end_date:%m-%d}\nTF:{entry.slack}"
        )
    nx.draw_networkx_labels(G, pos, labels, font_size=7, ax=ax)

    legend_elements = [
        mpatches.Patch(facecolor=theme["node_crit"], edgecolor=theme["critical"], linewidth=2, label='Critical Task'),
        mpatches.Patch(color=theme["node_noncrit"], label='Non-Critical Task'),
    ]
    for dep_type, (color_key, style) in EDGE_STYLES.items():
        legend_elements.append(
            plt.Line2D([0], [0], color=theme[color_key], linewidth=2, linestyle=style,
                       label=f"{dep_type.code} ({dep_type.value})")
        )
    ax.legend(handles=legend_elements, loc='upper left', bbox_to_anchor=(1.02, 1), fontsize=8, frameon=True)
    ax.set_title('Task Dependency Network', fontsize=14, fontweight='bold')
    ax.axis('off')
    plt.tight_layout()
    return fig


def gantt_dataframe(snapshot: ProjectSnapshot, entries: Optional[List[CriticalPathEntry]] = None) -> pd.DataFrame:
    critical = _critical_lookup(snapshot, entries)
    data = []
    for task in snapshot:
        entry = critical[task.id]
        data.append(
            {
                "Task": f"{task.id} - {task.display_name}" if task.name else task.id,
                "Start": pd.Timestamp(task.start_date),
                # Timeline bars end exclusive; stored end dates are inclusive
                "Finish": pd.Timestamp(task.end_date + timedelta(days=1)),
                "Critical": "Yes" if entry.is_critical else "No",
                "ID": task.id,
                "Duration": task.duration_days,
                "TF": entry.slack,
                "Pinned": "Yes" if task.manual_override_dates else "No",
                "Dependencies": ", ".join(str(e) for e in task.dependencies),
            }
        )
    return pd.DataFrame(data)


def create_plotly_gantt(
    snapshot: ProjectSnapshot,
    entries: Optional[List[CriticalPathEntry]] = None,
    theme: Optional[Dict[str, Any]] = None,
    scale: str = "Day",
) -> go.Figure:
    """
    Create an interactive Gantt chart using Plotly, on the stored calendar dates.
    """
    theme = theme or DEFAULT_THEME
    df = gantt_dataframe(snapshot, entries) if len(snapshot) else pd.DataFrame()
    if df.empty:
        fig = go.Figure()
        fig.add_annotation(text="No tasks to display", x=0.5, y=0.5, showarrow=False)
        fig.update_layout(height=400)
        return fig

    fig = px.timeline(
        df,
        x_start="Start",
        x_end="Finish",
        y="Task",
        color="Critical",
        color_discrete_map={"Yes": theme["critical"], "No": theme["noncritical"]},
        hover_data=["ID", "Duration", "TF", "Pinned", "Dependencies"],
    )
    fig.update_yaxes(autorange="reversed")
    fig.update_layout(
        height=max(450, len(df) * 32),
        margin=dict(l=10, r=10, t=30, b=10),
        title=f"Project Timeline ({scale} View)",
        xaxis_title="Calendar Timeline",
        yaxis_title="Tasks",
        legend_title="Critical",
        template="plotly_white",
        paper_bgcolor=theme["surface"],
        plot_bgcolor=theme["surface"],
        font=dict(color=theme["ink"]),
    )
    fig.update_xaxes(gridcolor=theme["border"])
    fig.update_yaxes(gridcolor=theme["border"])

    scale_lower = scale.lower()
    if scale_lower == "week":
        fig.update_xaxes(tickmode="linear", dtick=7*24*60*60*1000, tickformat="%b %d", tickangle=-45)
    elif scale_lower == "month":
        fig.update_xaxes(dtick="M1", tickformat="%b %Y", tickangle=-45)
    else:  # Day
        fig.update_xaxes(tickmode="linear", dtick=24*60*60*1000, tickformat="%b %d", tickangle=-45)

    return fig

