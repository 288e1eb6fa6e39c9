"""
gfalook: 1D visualization of variation graphs.

Bins every path of a GFA graph onto a shared pangenomic axis, optionally
clusters paths by their bin profiles, and lays them out as colored rows.
"""

__version__ = "0.1.0"

# Lazy imports to avoid loading numpy/sklearn on import
def __getattr__(name):
    if name == "params":
        from . import params
        return params
    elif name == "gfa":
        from . import gfa
        return gfa
    elif name == "binning":
        from . import binning
        return binning
    elif name == "clustering":
        from . import clustering
        return clustering
    elif name == "pipeline":
        from . import pipeline
        return pipeline
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
