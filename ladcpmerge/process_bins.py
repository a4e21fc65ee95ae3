"""
Pre-average the bins of high frequency (1200 kHz) instruments.
A 1200 kHz Workhorse measures very close to the rosette with short bins, so bins are blanked near the transducer when
the rosette moves towards the instrument and then averaged to reduce noise.


ladcpmerge.process_bins
--------------------------
is_high_frequency
    Determines whether an instrument requires bin pre-averaging.
blank_near_bins
    Blanks bins close to the transducer when the rosette moves towards the instrument.
average_bins
    Averages consecutive bins and recomputes the bin geometry.

"""

import warnings
import numpy as np
from .records import bin_distances, BEAM_CHANNELS
from .tools import plog

warnings.filterwarnings(action='ignore', message='Mean of empty slice')


def is_high_frequency(ds, options):
    """True if the instrument frequency requires bin pre-averaging."""
    return ds.attrs['frequency'] == options['high_frequency_khz']


def blank_near_bins(ds, min_range):
    """
    Blanks all channels of bins closer than min_range to the transducer, for ensembles where the rosette
    moves towards the instrument: upwards for a down-looker, downwards for an up-looker.
    These measurements are taken in the wake of the rosette.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset in earth coordinates.
    min_range : float
        Distance in m from the transducer within which bins are blanked.


    Outputs
    -------
    ds : xr.Dataset
        Same as input with blanked bins set to NaN in velocity, correlation, amplitude and percent good.

    """
    near_bins = bin_distances(ds) < min_range
    vertical = np.nanmean(ds['velocity'].values[:, :, 2], axis=1)
    if ds.attrs['orientation'] == 'up':
        towards = vertical > 0
    else:
        towards = vertical < 0

    velocity = ds['velocity'].values.copy()
    velocity[np.ix_(towards, near_bins)] = np.nan
    if np.count_nonzero(near_bins) > 0:
        plog(f'    Blanked {np.count_nonzero(near_bins)} bins in {np.count_nonzero(towards)} ensembles closer than {min_range} m')

    ds = ds.copy()
    ds['velocity'] = (['time', 'bin', 'beam'], velocity)
    bad = np.isnan(velocity)
    for name in BEAM_CHANNELS[1:]:
        values = ds[name].values.astype(float)
        values[bad] = np.nan
        ds[name] = (['time', 'bin', 'beam'], values)
    return ds


def average_bins(ds, n_average, min_range=0):
    """
    Averages every n_average consecutive bins into one bin. The last group may contain fewer bins.
    If n_average exceeds the number of bins, three identical bins holding the average of the full profile are returned
    as later processing expects at least three bins.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset in earth coordinates.
    n_average : int
        Number of bins averaged together.
    min_range : float
        Distance in m from the transducer blanked before averaging, see blank_near_bins.


    Outputs
    -------
    ds : xr.Dataset
        Averaged instrument dataset with updated n_bins, bin_length and first_bin_distance attributes.
    backup : xr.Dataset
        Copy of the input before blanking and averaging.

    """
    plog(f'    DETECTED {ds.attrs["frequency"]}kHz instrument: averaging bins, NAV={n_average}')
    backup = ds.copy(deep=True)
    ds = blank_near_bins(ds, min_range)

    n_bins = ds.attrs['n_bins']
    if n_average <= n_bins:
        groups = [np.arange(n, min(n + n_average, n_bins)) for n in range(0, n_bins, n_average)]
    else:
        groups = [np.arange(n_bins)] * 3

    averaged = ds.isel(bin=[g[0] for g in groups]).copy()
    for name in BEAM_CHANNELS:
        values = ds[name].values
        averaged[name] = (
            ['time', 'bin', 'beam'],
            np.stack([np.nanmean(values[:, g, :], axis=1) for g in groups], axis=1),
        )
    averaged = averaged.assign_coords(bin=('bin', np.arange(1, len(groups) + 1)))

    bin_length = ds.attrs['bin_length']
    if n_average <= n_bins:
        averaged.attrs['n_bins'] = int(np.ceil(n_bins / n_average))
        averaged.attrs['bin_length'] = bin_length * n_average
        averaged.attrs['first_bin_distance'] = ds.attrs['first_bin_distance'] - bin_length / 2 + bin_length * n_average / 2
    else:
        averaged.attrs['first_bin_distance'] = bin_length * n_bins / 2
        averaged.attrs['n_bins'] = 3
    return averaged, backup
