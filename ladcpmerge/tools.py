"""
ladcpmerge.tools
--------------------------
Helper functions for ladcpmerge
"""
import logging
import numpy as np
from datetime import datetime as dt
from scipy.interpolate import interp1d
from scipy.stats import trim_mean


def get_options(verbose=True, **kwargs):
    """
    Returns a dictionary containing options compatible with ladcpmerge.
    Run with no kwargs to output a default dictionary, or with kwargs to return a full dictionary with the chosen options
    """
    options = {
        'QC_percent_good_threshold' : [0, 'minimum acceptable percent-good of the 4-beam solution. Bins below are removed.'],
        'QC_error_velocity_threshold' : [0.5, 'maximum acceptable absolute error velocity in m.s-1.'],
        'high_frequency_khz' : [1200, 'instrument frequency in kHz for which bins are pre-averaged.'],
        'high_frequency_bin_averaging' : [4, 'number of consecutive bins averaged together for high frequency instruments.'],
        'high_frequency_extra_blank' : [0, 'distance in m from the transducer blanked out for high frequency instruments when moving towards them.'],
        'maximum_lag' : [50, 'maximum lag in ensembles searched when matching up- and down-looking instruments.'],
        'up_down_time_offset' : [0, 'seconds added to the up-looking instrument clock.'],
        'resample_timing' : ['none', 'up_to_down', 'down_to_up', 'auto'],
        'up_down_distance' : [0, 'distance in m between up- and down-looking transducers, added to the up-looker first bin distance.'],
        'mask_down_bins' : [[], 'list of 1-based down-looker bins whose velocities are discarded.'],
        'mask_up_bins' : [[], 'list of 1-based up-looker bins whose velocities are discarded.'],
        'correct_year' : [None, 'year to use for instruments which report year 1900 (narrowband).'],
        'clear_pressure' : [False, True, 'set instrument pressure records to zero.'],
        'save_target_strength_beams' : [[], 'list of beams (1-4) for which target strength is kept separately.'],
        'save_correlation_beams' : [[], 'list of beams (1-4) for which correlation is kept separately.'],
        'save_percent_good_beams' : [[], 'list of percent-good channels (1-4) kept separately.'],
        'use_bin_remapping' : [True, False, 'remap bins to constant depth using the tilt of the instrument.'],
        'convex_transducer' : [True, False],
        'ping_rate_tolerance' : [0.05, 'acceptable difference in ping interval, in s.'],
        'time_gap_limit' : [1, 'maximum time difference in s between resampled ensembles.'],
        'large_lag_threshold' : [20, 'lag in ensembles above which a warning is issued.'],
        'lag_correlation_threshold' : [0.8, 'lag correlation below which a warning is issued.'],
        'three_beam_warning_fraction' : [0.2, 'fraction of 3-beam solutions above which a warning is issued.'],
        'surface_amplitude_threshold' : [20, 'minimum echo amplitude above the bin median for surface detection.'],
        'bottom_track_dummy' : [-32.768, 'value used by the instrument for missing bottom track data.'],
        'bottom_velocity_floor' : [-30, 'bottom track values below this are discarded.'],
        'latitude' : [0, 'latitude used to convert instrument pressure to depth.'],
        }

    default = dict()

    if verbose:
        print('Available options are: ')
        for i, (k,v) in enumerate(options.items()):
            print('    %s : %s' % (k, v))
        print('Default setting is the first value.')

    for i, (k,v) in enumerate(options.items()):
        default[k] = v[0]

    for i, (k,v) in enumerate(kwargs.items()):
        if k not in options:
            raise KeyError(f'Unknown option {k}. See ladcpmerge.tools.get_options() for valid keys.')
        default[k] = v

    return default

"""
Quality of life functions
"""
_log = logging.getLogger(__name__)
def plog(msg):
    """
    Output information to the logger with timestamp.
    """
    print(msg)
    _log.info(str(dt.now().replace(microsecond=0)) + ' : ' + str(msg))
    return None

def pwarn(msg, messages=None):
    """
    Output a warning to the logger and append it to the list of cast messages.
    """
    print('>   ' + msg)
    _log.warning(str(dt.now().replace(microsecond=0)) + ' : ' + str(msg))
    if messages is not None:
        messages.append(msg)
    return None

def nearest_index(x, xi):
    """
    Index of the nearest finite x for every xi. Out of range values are clamped to the first or last finite x.
    """
    x = np.asarray(x, dtype=float)
    idx = np.arange(len(x))
    _gd = np.isfinite(x)
    if np.count_nonzero(_gd) == 0:
        return np.zeros(np.shape(xi), dtype=int)
    if np.count_nonzero(_gd) == 1:
        return np.full(np.shape(xi), idx[_gd][0], dtype=int)
    first, last = idx[_gd][np.argmin(x[_gd])], idx[_gd][np.argmax(x[_gd])]
    out = interp1d(x[_gd], idx[_gd], kind='nearest', bounds_error=False, fill_value=(first, last))(np.nan_to_num(xi, nan=-np.inf))
    return out.astype(int)

def nantrim_mean(x, proportion=0.25):
    """
    Mean of the finite values of x after discarding the given proportion at both ends.
    """
    x = np.asarray(x, dtype=float)
    x = x[np.isfinite(x)]
    if len(x) == 0:
        return np.nan
    return float(trim_mean(x, proportion))
