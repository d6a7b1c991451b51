import pytest


def result_table(id, sh, title_org, title_eng="", title_alt="", author="kowalski", fmt="Advanced SSA", downloads=10, description=""):
    """One search result in the markup served by szukaj.php."""
    return f"""
<table class="Napisy" style="text-align: center" width="100%">
  <tr class="KNap"><td>{title_org}</td><td>2024.01.01</td><td>24 KB</td><td>{fmt}</td></tr>
  <tr class="KNap"><td>{title_eng}</td><td><a href="osoba.php?id=1">{author}</a></td><td>0</td><td></td></tr>
  <tr class="KNap"><td>{title_alt}</td><td></td><td></td><td>{downloads} razy</td></tr>
  <tr class="KKom">
    <td class="KNap" align="left">{description}</td>
    <td><form method="POST" action="sciagnij.php">
      <input type="hidden" name="id" value="{id}">
      <input type="hidden" name="sh" value="{sh}">
      <input type="submit" name="single_file" value="Pobierz napisy">
    </form></td>
  </tr>
</table>"""


def search_page(*tables):
    return "<html><body>" + "".join(tables) + "</body></html>"


@pytest.fixture
def make_table():
    return result_table


@pytest.fixture
def make_page():
    return search_page
