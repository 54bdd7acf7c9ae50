import contextlib
import warnings

import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib import MatplotlibDeprecationWarning

__all__ = ["plot_config"]


@contextlib.contextmanager
def plot_config(
    style="ticks",
    context="notebook",
    palette="colorblind",
    font_scale=1,
    rc=dict(),
    despine_kwargs=dict(),
):
    """Context manager that temporarily sets the seaborn style, context and palette.

    The matplotlib defaults are restored on exit and the figures created inside are
    despined. Arguments are those of `sns.axes_style`, `sns.plotting_context`,
    `sns.color_palette` and `sns.despine`.
    """
    defaults = plt.rcParams.copy()

    try:
        with sns.axes_style(style=style, rc=rc), sns.plotting_context(
            context=context, font_scale=font_scale, rc=rc
        ), sns.color_palette(palette):
            yield
        sns.despine(**despine_kwargs)

    finally:
        with warnings.catch_warnings():
            # resetting every default warns about deprecated keys
            warnings.filterwarnings("ignore", category=MatplotlibDeprecationWarning)
            plt.rcParams.update(defaults)
