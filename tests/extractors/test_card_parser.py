"""
CardPageParser 单元测试
"""
import json
import unittest

from config import get_source_config
from core.errors import ParseFailure
from extractors.card_parser import CardPageParser


LISTING_HTML = """
<html><body>
  <a href="/cards/sorfr-005-252-l-luke-skywalker-faithful-friend">Luke</a>
  <a href="/cards/sorfr-010-252-r-darth-vader-dark-lord-of-the-sith">Vader</a>
  <a href="/cards/sorfr-005-252-l-luke-skywalker-faithful-friend">Luke again</a>
  <a href="/cards/search?q=luke">Search</a>
  <a href="/cards/cartes-les-plus-cheres">Top prices</a>
  <a href="/series/sor-etincelle-de-rebellion?page=2">Next</a>
  <a>No href</a>
</body></html>
"""


def card_html(sku="SOR•FR - 005/252 - L", image="https://cdn.swucards.fr/cards/sor-005.png", extra=""):
    json_ld = json.dumps({
        "@context": "https://schema.org",
        "@type": "Product",
        "name": "Luke Skywalker - Ami Fidèle",
        "sku": sku,
        "image": image,
    }, ensure_ascii=False)
    return f"""
    <html><head>
      <meta property="og:image" content="https://cdn.swucards.fr/og/sor-005.png">
      <script type="application/ld+json">{json_ld}</script>
    </head><body>{extra}</body></html>
    """


class TestCardPageParserStarWars(unittest.TestCase):
    """使用 configs/starwars.json 的选择器"""

    def setUp(self):
        self.source = get_source_config("starwars")
        self.parser = CardPageParser(self.source.selectors)
        self.url = "https://www.swucards.fr/cards/sorfr-005-252-l-luke-skywalker-faithful-friend"

    def test_listing_links_deduplicated_and_filtered(self):
        links = self.parser.parse_listing(LISTING_HTML, "https://www.swucards.fr/series/sor-etincelle-de-rebellion")
        self.assertEqual(links, [
            "https://www.swucards.fr/cards/sorfr-005-252-l-luke-skywalker-faithful-friend",
            "https://www.swucards.fr/cards/sorfr-010-252-r-darth-vader-dark-lord-of-the-sith",
        ])

    def test_card_from_json_ld_sku(self):
        card = self.parser.parse_card(card_html(), self.url)
        self.assertEqual(card.number, "005")
        self.assertEqual(card.name, "Luke Skywalker - Ami Fidèle")
        self.assertEqual(card.language, "fr")
        self.assertEqual(card.rarity, "L")
        self.assertEqual(card.image_url, "https://cdn.swucards.fr/cards/sor-005.png")
        self.assertEqual(card.source_url, self.url)

    def test_og_image_used_when_json_ld_has_none(self):
        card = self.parser.parse_card(card_html(image=None), self.url)
        self.assertEqual(card.image_url, "https://cdn.swucards.fr/og/sor-005.png")

    def test_url_pattern_fallback(self):
        html = "<html><head><title>Luke</title></head><body></body></html>"
        card = self.parser.parse_card(html, self.url)
        self.assertEqual(card.number, "005")
        self.assertEqual(card.language, "fr")
        self.assertEqual(card.rarity, "l")
        self.assertEqual(card.name, "Luke Skywalker Faithful Friend")

    def test_english_sku(self):
        card = self.parser.parse_card(card_html(sku="SOR•EN - 010/252 - R"), self.url)
        self.assertEqual(card.language, "en")
        self.assertEqual(card.number, "010")

    def test_no_number_raises_parse_failure(self):
        with self.assertRaises(ParseFailure) as ctx:
            self.parser.parse_card("<html><body>Maintenance</body></html>", "https://www.swucards.fr/cards/unknown")
        self.assertEqual(ctx.exception.identifier, "https://www.swucards.fr/cards/unknown")

    def test_invalid_json_ld_is_ignored(self):
        html = '<script type="application/ld+json">{broken</script>'
        card = self.parser.parse_card(html, self.url)
        self.assertEqual(card.number, "005")


class TestCardPageParserSelectors(unittest.TestCase):
    """纯 CSS 选择器配置"""

    def setUp(self):
        self.parser = CardPageParser({
            "card_link": "a.card-link",
            "name": "h1.card-name",
            "number": ".card-number",
            "rarity": ".card-rarity",
            "language": "meta[name='card-lang']",
            "image": "img.card-image",
            "attributes": {"cost": ".card-cost", "type": ".card-type", "flavor": ".flavor"},
        })

    def test_selector_fields_and_attributes(self):
        html = """
        <html><head><meta name="card-lang" content="EN"></head><body>
          <h1 class="card-name"> Grogu </h1>
          <span class="card-number">T03</span>
          <span class="card-rarity">S</span>
          <img class="card-image" data-src="/img/t03.png">
          <span class="card-cost">2</span><span class="card-type">Unit</span>
        </body></html>
        """
        card = self.parser.parse_card(html, "https://cards.example.com/cards/t03")
        self.assertEqual(card.name, "Grogu")
        self.assertEqual(card.number, "T03")
        self.assertEqual(card.language, "en")
        self.assertEqual(card.image_url, "https://cards.example.com/img/t03.png")
        self.assertEqual(card.attributes, {"cost": "2", "type": "Unit"})

    def test_card_back_image_is_skipped(self):
        html = '<span class="card-number">1</span><img class="card-image" src="/img/card-back.png">'
        self.assertIsNone(self.parser.parse_card(html, "https://cards.example.com/cards/1").image_url)

    def test_listing_uses_configured_selector(self):
        html = '<a class="card-link" href="c/1">1</a><a href="c/2">2</a>'
        self.assertEqual(self.parser.parse_listing(html, "https://cards.example.com/sets/x/"),
                         ["https://cards.example.com/sets/x/c/1"])


if __name__ == '__main__':
    unittest.main()
