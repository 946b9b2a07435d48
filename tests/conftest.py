import pytest

from ampseq.config.schema import Params


@pytest.fixture
def open_params():
    """Archaea run with no trimming/truncation so synthetic reads pass untouched."""
    return Params(
        domain="Archaea",
        trim_left_f=0,
        trim_left_r=0,
        trunc_len_f=0,
        trunc_len_r=0,
        rm_phix=False,
        contaminant_threshold=0.5,
    )
