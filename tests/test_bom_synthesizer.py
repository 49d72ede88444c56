from models.bom_models import CustomMaterial, OptionSelection, Part, ProductFamily
from services.bom_synthesizer import BOMSynthesizer, append_hardware_if_missing, merge_parts
from services.catalog import Catalog


def quantities(bom):
    return {p.name: p.quantity for p in bom}


def pallet_selection(**overrides):
    values = dict(product_family="파렛트랙", size="2080x1000", height="H1500",
                  level="4단", form_type="독립형", quantity=1)
    values.update(overrides)
    return OptionSelection(**values)


PALLET_EXPECTED = {
    "기둥(H1500)": 4,
    "로드빔(2080)": 8,
    "타이빔(1000)": 8,
    "안전핀(파렛트랙)": 16,
    "경사브레싱": 4,
    "수평브레싱": 4,
    "앙카볼트": 4,
    "브레싱볼트": 8,
    "브러싱고무": 4,
}


def test_pallet_rack_from_formulas():
    bom = BOMSynthesizer(Catalog()).synthesize(pallet_selection())

    expected = dict(PALLET_EXPECTED)
    # Formula beams use the width floored to hundreds
    expected["로드빔(2000)"] = expected.pop("로드빔(2080)")
    assert quantities(bom) == expected
    assert next(p for p in bom if p.name == "로드빔(2000)").specification == "2000"


def test_pallet_rack_from_template_matches_formulas(catalog):
    bom = BOMSynthesizer(catalog).synthesize(pallet_selection())
    assert quantities(bom) == PALLET_EXPECTED


def test_pallet_rack_never_contains_base_bolts(catalog):
    bom = BOMSynthesizer(catalog).synthesize(pallet_selection())
    assert not any("베이스볼트" in p.name for p in bom)


def test_pallet_rack_connected_and_taller():
    sel = pallet_selection(form_type="연결형", height="H2500", quantity=2)
    bom = quantities(BOMSynthesizer(Catalog()).synthesize(sel))

    assert bom["기둥(H2500)"] == 4
    assert bom["수평브레싱"] == 4
    # two 500mm steps above 1500
    assert bom["경사브레싱"] == (2 + 1 * 2) * 2
    assert bom["브레싱볼트"] == bom["수평브레싱"] + bom["경사브레싱"]


def test_pallet_rack_materials_fill_unit_prices(catalog):
    bom = BOMSynthesizer(catalog).synthesize(pallet_selection())
    posts = next(p for p in bom if p.name == "기둥(H1500)")
    assert posts.unit_price == 42000
    assert posts.line_total == 42000 * 4


def test_hardware_append_is_idempotent():
    sel = pallet_selection()
    once = append_hardware_if_missing([], sel)
    twice = append_hardware_if_missing(once, sel)

    assert len(once) == 5
    assert quantities(twice) == quantities(once)
    assert len(twice) == len(once)


def test_hardware_append_respects_legacy_spelling():
    existing = [Part(product_family=ProductFamily.PALLET_RACK, name="브레싱고무", quantity=2)]
    result = append_hardware_if_missing(existing, pallet_selection())
    assert "브러싱고무" not in quantities(result)


def test_hardware_append_only_for_pallet_families():
    sel = OptionSelection(product_family="경량랙", size="W900xD450", height="H1500",
                          level="4단", form_type="독립형", quantity=1)
    assert append_hardware_if_missing([], sel) == []


def test_incomplete_selection_gives_empty_bom(catalog):
    synthesizer = BOMSynthesizer(catalog)
    assert synthesizer.synthesize(pallet_selection(height="")) == []
    assert synthesizer.synthesize(pallet_selection(quantity=0)) == []
    assert synthesizer.synthesize(OptionSelection(quantity=1)) == []


def test_high_rack_requires_form_type(catalog):
    sel = OptionSelection(product_family="하이랙", size="45x150", height="H1500", level="4단",
                          color="메트그레이(볼트식)270kg", quantity=1)
    assert BOMSynthesizer(catalog).synthesize(sel) == []


def test_high_rack_parts_carry_color_and_weight(catalog):
    sel = OptionSelection(product_family="하이랙", size="45x150", height="H1500", level="4단",
                          form_type="독립형", color="메트그레이(볼트식)270kg", quantity=1)
    bom = BOMSynthesizer(catalog).synthesize(sel)
    by_name = {p.name: p for p in bom}

    post = by_name["기둥(H1500) 메트그레이(볼트식)270kg"]
    assert post.quantity == 4
    assert post.specification == "높이 H1500 270kg"
    assert by_name["로드빔(150) 메트그레이(볼트식)270kg"].quantity == 8
    # depth 150 holds two shelves per level
    assert by_name["선반(45) 메트그레이(볼트식)270kg"].quantity == 8


def test_steel_plate_pallet_rack_has_shelves_and_no_tie_beams():
    sel = OptionSelection(product_family="파렛트랙 철판형", size="2080x1000", height="H1500",
                          level="3단", form_type="독립형", quantity=1)
    bom = quantities(BOMSynthesizer(Catalog()).synthesize(sel))

    assert bom["선반(2080)"] == 3 * 3
    shelf = next(p for p in BOMSynthesizer(Catalog()).synthesize(sel) if p.name == "선반(2080)")
    assert shelf.specification == "사이즈 2080x1000"
    assert not any(name.startswith("타이빔") for name in bom)
    assert bom["안전핀(파렛트랙)"] == 12


def test_stainless_rack():
    sel = OptionSelection(product_family="스텐랙", size="50x75", height="75", level="4단", quantity=1)
    bom = quantities(BOMSynthesizer(Catalog()).synthesize(sel))
    assert bom == {"기둥(75)": 4, "선반(50)": 4, "안전핀(스텐랙)": 16}


def test_light_duty_h750_fixed_parts():
    sel = OptionSelection(product_family="경량랙", size="W900xD450", height="H750",
                          level="3단", form_type="독립형", quantity=2)
    bom = quantities(BOMSynthesizer(Catalog()).synthesize(sel))

    assert bom == {
        "기둥(H750)": 8,
        "선반(900)": 6,
        "받침(상)(450)": 8,
        "받침(하)(450)": 8,
        "연결대(900)": 6,
        "안전좌(경량랙)": 6,
        "안전핀(경량랙)": 6,
    }


def test_light_duty_template_relabels_and_drops_zero_lines(catalog):
    sel = OptionSelection(product_family="경량랙", size="W900xD450", height="H1500",
                          level="4단", form_type="독립형", quantity=2)
    bom = BOMSynthesizer(catalog).synthesize(sel)
    by_name = {p.name: p for p in bom}

    assert all(p.quantity > 0 for p in bom)
    assert "연결대(900)" not in by_name
    assert not any("안전좌" in name for name in by_name)
    assert by_name["기둥(H1500)"].quantity == 8
    assert by_name["기둥(H1500)"].line_total == 36000
    assert by_name["선반(900)"].specification == "사이즈 W900xD450"
    assert by_name["받침(상)(450)"].specification == "D450"
    assert by_name["안전핀(경량랙)"].specification == "경량랙"


def test_light_duty_without_template_is_empty(catalog):
    sel = OptionSelection(product_family="경량랙", size="W1200xD450", height="H1500",
                          level="4단", form_type="독립형", quantity=1)
    assert BOMSynthesizer(catalog).synthesize(sel) == []


def test_bom_sorted_by_material_group(catalog):
    sel = OptionSelection(product_family="경량랙", size="W900xD450", height="H1500",
                          level="4단", form_type="독립형", quantity=1,
                          custom_materials=[CustomMaterial(name="도어", price=20000)])
    bom = BOMSynthesizer(catalog).synthesize(sel)

    assert bom[0].name == "기둥(H1500)"
    assert bom[-1].name == "도어"
    assert bom[-1].is_custom


def test_extra_option_sub_bom(catalog):
    bom = BOMSynthesizer(catalog).synthesize(pallet_selection(extra_option_ids=["p1-1"]))
    plate = next(p for p in bom if p.name == "철판")
    assert plate.quantity == 3
    assert plate.unit_price == 38000


def test_extra_option_single_line_bom_takes_flat_price(catalog):
    bom = BOMSynthesizer(catalog).synthesize(pallet_selection(extra_option_ids=["p1-2"]))
    guard = next(p for p in bom if p.name == "기둥보호대")
    assert guard.unit_price == 25000


def test_extra_option_price_override(catalog):
    synthesizer = BOMSynthesizer(catalog, extra_price_lookup=lambda option_id: 15000 if option_id == "l1-2" else 0)
    sel = OptionSelection(product_family="경량랙", size="W900xD450", height="H1500",
                          level="4단", form_type="독립형", quantity=3, extra_option_ids=["l1-2"])
    wheels = next(p for p in synthesizer.synthesize(sel) if p.name == "바퀴")

    assert wheels.unit_price == 15000
    assert wheels.quantity == 1


def test_merge_parts_sums_duplicates():
    a = Part(product_family=ProductFamily.PALLET_RACK, name="앙카볼트", quantity=4, unit_price=900, line_total=3600)
    b = Part(product_family=ProductFamily.PALLET_RACK, name="앙카볼트", quantity=2, unit_price=900, line_total=1800)
    c = Part(product_family=ProductFamily.PALLET_RACK, name="앙카볼트", specification="M12", quantity=1)

    merged = merge_parts([a, b, c])

    assert len(merged) == 2
    assert merged[0].quantity == 6
    assert merged[0].line_total == 5400
    assert a.quantity == 4


def test_heavy_duty_h750_uses_template():
    catalog = Catalog(templates={"중량랙": {"W900xD450": {"H750": {"3단": {"독립형": {"components": [
        {"name": "기둥", "quantity": 4, "unit_price": 5000},
        {"name": "선반", "quantity": 3, "unit_price": 12000},
    ]}}}}}})
    sel = OptionSelection(product_family="중량랙", size="W900xD450", height="H750",
                          level="3단", form_type="독립형", quantity=1)

    bom = BOMSynthesizer(catalog).synthesize(sel)

    assert quantities(bom) == {"기둥(H750)": 4, "선반(900)": 3}
    assert {p.name: p.unit_price for p in bom} == {"기둥(H750)": 5000, "선반(900)": 12000}


def test_heavy_duty_h750_without_template_is_empty():
    sel = OptionSelection(product_family="중량랙", size="W900xD450", height="H750",
                          level="3단", form_type="독립형", quantity=1)
    assert BOMSynthesizer(Catalog()).synthesize(sel) == []
