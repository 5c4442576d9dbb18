from resolution.normalize import normalize, slugify


def test_normalize_folds_case_accents_and_quotes():
    assert normalize("  Seán  O’Neill ") == "seano'neill"
    assert normalize("Zoë Müller-Ñúñez") == "zoemullernunez"


def test_normalize_strips_punctuation_set():
    assert normalize("J.-P. (Jean) Smith") == "jpjeansmith"


def test_normalize_handles_missing_input():
    assert normalize(None) == ""
    assert normalize("   ") == ""


def test_slugify_builds_hyphenated_ids():
    assert slugify("Paul O'Neill") == "paul-oneill"
    assert slugify("Seán Ó Briain") == "sean-o-briain"
    assert slugify("!!!") == ""
