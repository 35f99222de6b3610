import pytest

from realignfilter.cigar import parse_cigar
from realignfilter.models import Read, SampleCall, Variant, allele_length, is_symbolic_allele
from realignfilter.support import VariantSupportClassifier, matching_allele, supports_variant


def make_read(bases: str, cigar: str, start: int, sample: str = "TUMOR") -> Read:
    return Read(
        name="r1",
        contig="chr1",
        reference_start=start,
        cigar=parse_cigar(cigar),
        bases=bases,
        sample=sample,
        mapping_quality=60,
    )


def make_variant(pos: int, ref: str, *alts: str) -> Variant:
    return Variant(
        contig="chr1",
        pos=pos,
        ref=ref,
        alts=tuple(alts),
        samples=(SampleCall("TUMOR", (0, 1)),),
    )


def with_base(n: int, offset: int, base: str, fill: str = "A") -> str:
    seq = [fill] * n
    seq[offset] = base
    return "".join(seq)


def test_snv_exact_match():
    # position 50 maps to read offset 9
    var = make_variant(50, "A", "G")
    assert supports_variant(make_read(with_base(20, 9, "G"), "20M", 41), var)
    assert not supports_variant(make_read(with_base(20, 9, "T"), "20M", 41), var)


def test_mnp_single_mismatch_breaks_support():
    var = make_variant(50, "AC", "GT")
    good = "AAAAAAAAAGTAAAAAAAAA"
    bad = "AAAAAAAAAGCAAAAAAAAA"
    assert supports_variant(make_read(good, "20M", 41), var)
    assert not supports_variant(make_read(bad, "20M", 41), var)


def test_mnp_window_clipped_to_read_end():
    var = make_variant(60, "AC", "GA")
    # position 60 is the last read base; only one base of the allele fits
    read = make_read(with_base(20, 19, "G"), "20M", 41)
    assert not supports_variant(read, var)


def test_insertion_within_tolerance():
    var = make_variant(100, "A", "AT")
    # variant maps to read offset 10; insertion starts at read offset 13
    r1 = make_read("A" * 44, "13M1I30M", 90)
    r2 = make_read("A" * 45, "30M1I14M", 90)
    assert supports_variant(r1, var, indel_start_tolerance=5)
    assert not supports_variant(r2, var, indel_start_tolerance=5)


def test_indel_tolerance_boundary():
    var = make_variant(100, "A", "AT")
    at_limit = make_read("A" * 46, "15M1I30M", 90)
    past_limit = make_read("A" * 47, "16M1I30M", 90)
    assert supports_variant(at_limit, var, indel_start_tolerance=5)
    assert not supports_variant(past_limit, var, indel_start_tolerance=5)
    assert supports_variant(past_limit, var, indel_start_tolerance=6)


def test_deletion_needs_deletion_operator():
    var = make_variant(100, "ACG", "A")
    with_del = make_read("A" * 42, "12M2D30M", 90)
    with_ins = make_read("A" * 44, "12M2I30M", 90)
    assert supports_variant(with_del, var)
    assert not supports_variant(with_ins, var)


def test_soft_clip_supports_both_indel_directions():
    ins = make_variant(100, "A", "AT")
    dele = make_variant(100, "AT", "A")
    read = make_read("A" * 25, "15M10S", 90)
    assert supports_variant(read, ins)
    assert supports_variant(read, dele)


def test_clipped_away_position_never_supports():
    var = make_variant(100, "A", "G")
    # reference_start 101 with 10 leading soft-clipped bases: position 100 is clipped
    read = make_read(with_base(40, 9, "G"), "10S30M", 101)
    assert read.soft_start == 91
    assert not supports_variant(read, var)
    assert not supports_variant(read, make_variant(100, "A", "AG"))


def test_position_inside_deletion_is_not_support():
    var = make_variant(101, "AC", "A")
    read = make_read("A" * 31, "11M3D20M", 90)
    assert not supports_variant(read, var)


def test_later_allele_can_match():
    var = make_variant(50, "A", "C", "G")
    read = make_read(with_base(20, 9, "G"), "20M", 41)
    assert supports_variant(read, var)
    assert matching_allele(read, var) == 1


def test_first_matching_allele_wins():
    var = make_variant(50, "A", "G", "AT")
    read = make_read(with_base(20, 9, "G") + "A", "10M1I10M", 41)
    assert matching_allele(read, var) == 0


def test_cursor_stops_once_inside_window():
    # 2M starts within the window, so the cursor stays at 0 and the later 1I is
    # checked against read position 0 as well
    var = make_variant(91, "A", "AT")
    read = make_read("A" * 33, "2M1D20M1I10M", 90)
    assert supports_variant(read, var)


def test_cursor_advances_by_deletion_length_outside_window():
    # variant offset 14; 5M -> 5, 3D -> 8, 10M -> 18, so the 1I is checked at 18
    var = make_variant(107, "A", "AT")
    read = make_read("A" * 46, "5M3D10M1I30M", 90)
    assert supports_variant(read, var, indel_start_tolerance=4)
    assert not supports_variant(read, var, indel_start_tolerance=3)


def test_classifier_rejects_negative_tolerance():
    with pytest.raises(ValueError):
        VariantSupportClassifier(indel_start_tolerance=-1)

    clf = VariantSupportClassifier(indel_start_tolerance=0)
    var = make_variant(100, "A", "AT")
    # insertion starts exactly at the mapped offset
    assert clf.supports(make_read("A" * 41, "10M1I30M", 90), var)
    assert not clf.supports(make_read("A" * 42, "11M1I30M", 90), var)


@pytest.mark.parametrize("alt", ["<DEL>", "<NON_REF>", "*", "G]chr2:500]", "]chr2:500]G", "G.", ".G"])
def test_symbolic_alt_is_treated_as_deletion(alt):
    assert is_symbolic_allele(alt)
    assert allele_length(alt) == 0
    var = make_variant(100, "A", alt)
    assert supports_variant(make_read("A" * 42, "12M2D30M", 90), var)
    assert not supports_variant(make_read("A" * 44, "12M2I30M", 90), var)


def test_literal_alleles_keep_their_length():
    assert allele_length("AT") == 2
    assert allele_length("G") == 1
    assert not is_symbolic_allele("ACGT")
