"""
In-memory representation of the ensembles of one RDI instrument and loading of instrument files.
The binary protocol is parsed elsewhere, this module only receives already-parsed arrays or netcdf files written from them.


ladcpmerge.records
--------------------------
make_instrument
    Builds the instrument xr.Dataset from already-parsed fixed leader, variable leader and data arrays.
load_instrument
    Opens one or several instrument files as one xr.Dataset.
replace_sentinels
    Converts dummy bottom track values to NaN.
fixed_leader
    Returns the immutable fixed leader record of an instrument.
check_time_base
    Raises if the julian day numbers cannot be represented as dates.
bin_distances
    Distance of each bin centre from the transducer.
instrument_id
    Instrument identifier derived from the serial number digits.

Notes
-------
Instrument datasets have dimensions time, bin and beam. The time base is the continuous (julian) day number
stored in the julian_day variable. Fixed leader values are stored as attributes.

"""

import warnings
from collections import namedtuple
from glob import glob
import numpy as np
import pandas as pd
import xarray as xr
from .tools import plog, pwarn

warnings.filterwarnings(action='ignore', message='invalid value encountered in divide')


BEAMS = (1, 2, 3, 4)
DUMMY_VALUE = -32.768

FixedLeader = namedtuple(
    'FixedLeader',
    [
        'n_bins',  # number of depth cells
        'pings_per_ensemble',
        'bin_length',  # depth cell length
        'blank',  # blank after transmit
        'first_bin_distance',  # distance to the middle of the first depth cell
        'pulse_length',  # transmit pulse length
        'serial',  # serial number digits of CPU board
        'beam_angle',
        'orientation',  # 'up' or 'down'
        'coordinate_system',  # 'beam' or 'earth'
        'frequency',  # kHz
        'family',  # 'broadband' or 'narrowband'
    ],
)

VARIABLE_LEADER = (
    'julian_day',
    'pitch',
    'roll',
    'heading',
    'temperature',
    'salinity',
    'sound_velocity',
    'xmit_current',
    'xmit_voltage',
    'internal_temperature',
    'pressure',
    'pressure_std',
)

BEAM_CHANNELS = ('velocity', 'correlation', 'amplitude', 'percent_good')
BOTTOM_CHANNELS = ('bottom_range', 'bottom_velocity')


def fixed_leader(ds):
    """
    Returns the fixed leader of an instrument dataset as an immutable FixedLeader record.
    """
    values = {k: ds.attrs[k] for k in FixedLeader._fields}
    values['serial'] = tuple(int(x) for x in np.atleast_1d(values['serial']))
    return FixedLeader(**values)


def bin_distances(ds):
    """
    Distance of the bin centres from the transducer in m.
    """
    return ds.attrs['first_bin_distance'] + ds.attrs['bin_length'] * np.arange(ds.attrs['n_bins'])


def instrument_id(serial):
    """
    Single number identifying an instrument from its serial number digits.
    """
    serial = np.asarray(serial, dtype=float)
    return float(np.prod(serial + 1) + np.sum(serial))


def make_instrument(
    julian_day,
    velocity,
    correlation=None,
    amplitude=None,
    percent_good=None,
    bottom_range=None,
    bottom_velocity=None,
    n_bins=None,
    pings_per_ensemble=1,
    bin_length=8.0,
    blank=0.0,
    first_bin_distance=None,
    pulse_length=8.0,
    serial=(0, 0, 0, 0, 0, 0, 0, 0),
    beam_angle=20.0,
    orientation='down',
    coordinate_system='earth',
    frequency=300,
    family='broadband',
    **leader,
):
    """
    Builds an instrument dataset from already-parsed arrays.


    Inputs
    ----------
    julian_day : np.array
        Time of each ensemble as a continuous day number.
    velocity : np.array
        (ensemble, bin, beam) velocities in beam or earth coordinates, in m.s-1.
    correlation, amplitude, percent_good : np.array, optional
        (ensemble, bin, beam) quality channels. Missing correlation is set to 100 (narrowband instruments do not record it),
        missing amplitude to NaN and missing percent good to 100.
    bottom_range, bottom_velocity : np.array, optional
        (ensemble, beam) bottom track channels. NaN if the instrument did not bottom track.
    n_bins, pings_per_ensemble, ... family :
        Fixed leader values. n_bins defaults to the size of the bin dimension of velocity,
        first_bin_distance to blank + bin_length.
    **leader : np.array
        Remaining variable leader channels (pitch, roll, heading, ...). Channels not given are set to NaN,
        apart from pitch, roll and heading which default to 0.


    Outputs
    -------
    ds : xr.Dataset
        Instrument dataset with dimensions time, bin and beam.

    """
    velocity = np.asarray(velocity, dtype=float)
    n_ens, n_bin, _ = np.shape(velocity)
    shape = np.shape(velocity)

    def __channel(x, fill):
        if x is None:
            return np.full(shape, fill, dtype=float)
        return np.asarray(x, dtype=float)

    def __bottom(x):
        if x is None:
            return np.full([n_ens, 4], np.nan)
        return np.asarray(x, dtype=float)

    if n_bins is None:
        n_bins = n_bin
    if first_bin_distance is None:
        first_bin_distance = blank + bin_length

    data_vars = {
        'velocity': (['time', 'bin', 'beam'], velocity),
        'correlation': (['time', 'bin', 'beam'], __channel(correlation, 100)),
        'amplitude': (['time', 'bin', 'beam'], __channel(amplitude, np.nan)),
        'percent_good': (['time', 'bin', 'beam'], __channel(percent_good, 100)),
        'bottom_range': (['time', 'beam'], __bottom(bottom_range)),
        'bottom_velocity': (['time', 'beam'], __bottom(bottom_velocity)),
        'julian_day': ('time', np.asarray(julian_day, dtype=float)),
    }
    for name in VARIABLE_LEADER[1:]:
        if name in leader:
            data_vars[name] = ('time', np.asarray(leader.pop(name), dtype=float))
        elif name in ['pitch', 'roll', 'heading']:
            data_vars[name] = ('time', np.zeros(n_ens))
        else:
            data_vars[name] = ('time', np.full(n_ens, np.nan))
    if leader:
        raise TypeError(f'Unknown variable leader channels: {list(leader)}')

    ds = xr.Dataset(
        data_vars=data_vars,
        coords={
            'time': ('time', np.arange(n_ens)),
            'bin': ('bin', np.arange(1, n_bin + 1)),
            'beam': ('beam', list(BEAMS)),
        },
    )
    check_time_base(julian_day)
    ds.attrs = {
        'n_bins': int(n_bins),
        'pings_per_ensemble': int(pings_per_ensemble),
        'bin_length': float(bin_length),
        'blank': float(blank),
        'first_bin_distance': float(first_bin_distance),
        'pulse_length': float(pulse_length),
        'serial': list(serial),
        'beam_angle': float(beam_angle),
        'orientation': orientation,
        'coordinate_system': coordinate_system,
        'frequency': int(frequency),
        'family': family,
    }
    return ds


def check_time_base(julian_day):
    """
    Raises ValueError if finite julian day numbers fall outside the range of dates pandas can represent.
    Day numbers counted from the start of the year are the usual cause.
    """
    jd = np.asarray(julian_day, dtype=float)
    jd = jd[np.isfinite(jd)]
    jd_min, jd_max = pd.Timestamp.min.to_julian_date(), pd.Timestamp.max.to_julian_date()
    if np.any((jd < jd_min) | (jd > jd_max)):
        raise ValueError(
            f"julian_day must be a continuous julian day number between {jd_min:.0f} and {jd_max:.0f}, "
            f"found values from {np.min(jd)} to {np.max(jd)}"
        )


def replace_sentinels(ds, dummy=DUMMY_VALUE, messages=None):
    """
    Replaces dummy bottom track values with NaN. This is done once when the data enters the package so
    no later processing step compares against the dummy value.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset.
    dummy : float
        Value used by the instrument to signal no bottom detection.
    messages : list
        Warnings are appended to this list.


    Outputs
    -------
    ds : xr.Dataset
        Same as input with dummy bottom track values replaced by NaN.

    """
    for name in BOTTOM_CHANNELS:
        values = ds[name].values.copy()
        ind = np.isclose(values, dummy)
        if np.count_nonzero(ind) > 0:
            pwarn(f"Found {np.count_nonzero(ind)} dummy {name.replace('_', ' ')} values and discarded them", messages)
            values[ind] = np.nan
            ds[name] = (ds[name].dims, values)
    return ds


def load_instrument(file_path, dummy=DUMMY_VALUE, messages=None):
    """
    Loads instrument netcdf file(s) into an instrument dataset. Several files are concatenated along time.


    Inputs
    ----------
    file_path : str
        Path to the instrument netcdf files. Can handle wildcards through glob.
    dummy : float
        Value used by the instrument to signal no bottom detection.
    messages : list
        Warnings are appended to this list.


    Outputs
    -------
    ds : xr.Dataset
        Instrument dataset with dummy bottom track values replaced by NaN.
    multiple_files : bool
        True if the data was concatenated from several files.

    """
    files = sorted(glob(str(file_path)))
    if len(files) == 0:
        plog(f'Was not able to open {file_path}')
        raise FileNotFoundError(f'No instrument file matches {file_path}')

    plog(f'Loading {files[0]}' + (f' and {len(files) - 1} more files' if len(files) > 1 else ''))
    ds = xr.open_mfdataset(files, combine='nested', concat_dim='time', data_vars='minimal')
    ds.load()
    ds.close()
    ds = ds.assign_coords(time=('time', np.arange(len(ds.time))))
    check_time_base(ds['julian_day'].values)
    ds = replace_sentinels(ds, dummy, messages)
    plog(f'    Read {len(ds.time)} ensembles with {len(ds.bin)} bins each')
    return ds, len(files) > 1
