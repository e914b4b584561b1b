# colors.py
"""Fixed node palette. Colours are assigned by result index, not by table id."""

NODE_COLORS: tuple[str, ...] = (
    "#ABA482",
    "#910043",
    "#D50202",
    "#E0007B",
    "#F770A6",
    "#00CFD1",
    "#0078DB",
    "#4C00F0",
    "#9600DB",
    "#B175F6",
    "#00DB84",
    "#9DFA8F",
    "#20A55B",
    "#8DD100",
    "#D9D200",
    "#F05000",
    "#FB790E",
    "#E6AC00",
)

# Used for edges whose source table has no colour at all
FALLBACK_EDGE_COLOR = "#2986B2"


def get_next_color(index: int) -> str:
    return NODE_COLORS[index % len(NODE_COLORS)]
